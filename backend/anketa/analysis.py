"""
Questionnaire analysis orchestrator.

Runs two bounded retry loops that share the same attempt budget:

* client acquisition: resolve a ``ModelClient`` for the configured provider,
  switching once to the DeepSeek fallback before the final attempt;
* generation: call the model and parse its structured output, returning a
  fixed fallback result (attached to the raised error) when every attempt fails.

Both loops back off exponentially between failed attempts and stop as soon as
the request deadline expires.
"""
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from .config import FALLBACK_MODEL, FALLBACK_PROVIDER, Provider, Settings, qualify_model
from .deadline import Deadline
from .errors import (
    GenerationError,
    InitializationExhaustedError,
    OutputParseError,
    ProviderUnavailableError,
)
from .prompt import SYSTEM_PROMPT, build_prompt
from .providers import ModelClient, ProviderResolver
from .schemas import ANALYSIS_FAILED, PARSING_FAILED, AnalysisResult, QuestionAnswer

logger = logging.getLogger(__name__)

SleepFn = Callable[[float, Deadline], Awaitable[None]]


async def _deadline_sleep(delay: float, deadline: Deadline) -> None:
    await deadline.sleep(delay)


@dataclass
class AttemptState:
    provider: Provider
    model: str
    attempt: int = 0
    fell_back: bool = False
    last_error: Optional[BaseException] = None

    def fall_back(self) -> None:
        self.provider = FALLBACK_PROVIDER
        self.model = FALLBACK_MODEL
        self.fell_back = True


class AnalysisService:
    """Core AI service: questionnaire in, structured evaluation out"""

    def __init__(self, settings: Settings, resolver: Optional[ProviderResolver] = None,
                 sleep: Optional[SleepFn] = None):
        self.settings = settings
        self.resolver = resolver or ProviderResolver(settings)
        self._sleep = sleep or _deadline_sleep

    def backoff_delay(self, attempt: int) -> float:
        return self.settings.backoff_base_seconds * (2 ** (attempt - 1))

    def new_state(self) -> AttemptState:
        return AttemptState(
            provider=self.settings.provider,
            model=qualify_model(self.settings.provider, self.settings.model_name),
        )

    async def analyze(self, answers: Sequence[QuestionAnswer], deadline: Deadline) -> AnalysisResult:
        state = self.new_state()
        client = await self.acquire_client(state, deadline)
        logger.info(f"Using model {state.model}, sending request")
        try:
            return await self.generate(client, state, answers, deadline)
        finally:
            await client.aclose()

    async def acquire_client(self, state: AttemptState, deadline: Deadline) -> ModelClient:
        max_attempts = self.settings.max_attempts
        for attempt in range(1, max_attempts + 1):
            deadline.check("client acquisition")
            state.attempt = attempt

            failures = attempt - 1
            if attempt == max_attempts and failures > self.settings.fallback_after_failures and not state.fell_back:
                logger.warning(
                    f"Switching to fallback model {FALLBACK_MODEL} after {failures} failed attempts "
                    f"with {state.model}"
                )
                state.fall_back()

            try:
                return await self.resolver.resolve(state.provider, state.model, deadline)
            except ProviderUnavailableError as exc:
                state.last_error = exc
                logger.warning(f"Model initialization attempt {attempt}/{max_attempts} failed: {exc}")

            if attempt < max_attempts:
                await self._sleep(self.backoff_delay(attempt), deadline)

        deadline.check("client acquisition")
        logger.error(f"Model initialization failed after {max_attempts} attempts")
        raise InitializationExhaustedError(max_attempts, state.last_error) from state.last_error

    async def generate(self, client: ModelClient, state: AttemptState,
                       answers: Sequence[QuestionAnswer], deadline: Deadline) -> AnalysisResult:
        prompt = build_prompt(answers)
        max_attempts = self.settings.max_attempts
        for attempt in range(1, max_attempts + 1):
            deadline.check("generation")
            state.attempt = attempt
            try:
                generation = await client.generate(
                    model=state.model, system=SYSTEM_PROMPT, prompt=prompt, deadline=deadline
                )
                if generation is None:
                    raise GenerationError(f"model {state.model} returned no result")
                if generation.usage is None:
                    logger.info(f"token usage is nil (model={state.model})")
                else:
                    logger.info(f"usage in={generation.usage.input_tokens} out={generation.usage.output_tokens}")
                result = generation.output()
            except GenerationError as exc:
                state.last_error = exc
                logger.warning(f"Model call failed ({attempt}/{max_attempts}): {exc}")
                if attempt == max_attempts:
                    deadline.check("generation")
                    raise GenerationError(
                        f"generation failed after {attempt} attempts: {exc}", fallback=ANALYSIS_FAILED
                    ) from exc
            except OutputParseError as exc:
                state.last_error = exc
                logger.warning(f"Failed to parse model response ({attempt}/{max_attempts}): {exc}")
                if attempt == max_attempts:
                    deadline.check("generation")
                    raise OutputParseError(
                        f"parse failed after {attempt} attempts: {exc}", fallback=PARSING_FAILED
                    ) from exc
            else:
                logger.info("AI response received")
                return result

            await self._sleep(self.backoff_delay(attempt), deadline)

        raise GenerationError("unreachable", fallback=ANALYSIS_FAILED)
