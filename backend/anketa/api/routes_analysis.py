"""
HTTP surface of the analysis service.

POST /analysis validates the questionnaire, runs the orchestrator under the
request deadline and maps its errors to HTTP status codes.
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..analysis import AnalysisService
from ..deadline import Deadline
from ..errors import AnalysisError, DeadlineExceededError
from ..schemas import AnalysisRequest, AnalysisResult, ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["analysis"])


def get_analysis_service(request: Request) -> AnalysisService:
    return request.app.state.analysis_service


def _error(status_code: int, error: str, details: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=error, details=details).model_dump())


@router.post("/analysis", response_model=AnalysisResult)
async def analysis(request: Request, service: AnalysisService = Depends(get_analysis_service)):
    ct = request.headers.get("content-type")
    if ct and "application/json" not in ct:
        return _error(415, "unsupported_media_type", "Content-Type must be application/json")

    body = await request.body()
    try:
        payload = AnalysisRequest.model_validate_json(body)
    except ValidationError as exc:
        return _error(400, "invalid_request", str(exc))

    problem = payload.validation_problem()
    if problem:
        return _error(400, "validation_error", problem)

    deadline = Deadline.after(service.settings.request_timeout_seconds)
    try:
        result = await service.analyze(payload.answers, deadline)
    except DeadlineExceededError as exc:
        logger.error(f"Analysis timed out: {exc}")
        return _error(504, "analysis_timeout", str(exc))
    except AnalysisError as exc:
        logger.error(f"Analysis failed: {exc}")
        return _error(500, "analysis_failed", str(exc))

    return result
