from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class QuestionAnswer(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    question_text: str = ""
    answer: str = ""
    time: str = ""


class AnalysisRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    answers: List[QuestionAnswer] = Field(default_factory=list)

    def validation_problem(self) -> Optional[str]:
        """Return a human readable reason the request can't be analysed, or None."""
        if not self.answers:
            return "answers must contain at least one element"
        if not self.answers[0].question_text.strip():
            return "question_text is required"
        return None


class AnalysisResult(BaseModel):
    """Structured evaluation produced by the model."""

    detailed_report: str = Field(..., min_length=1)
    resume: str = Field(..., min_length=1)


ANALYSIS_FAILED_MESSAGE = "An error occurred during the analysis"
PARSING_FAILED_MESSAGE = "An error occurred while parsing the AI response"

ANALYSIS_FAILED = AnalysisResult(detailed_report=ANALYSIS_FAILED_MESSAGE, resume=ANALYSIS_FAILED_MESSAGE)
PARSING_FAILED = AnalysisResult(detailed_report=PARSING_FAILED_MESSAGE, resume=PARSING_FAILED_MESSAGE)


class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None
