"""Error taxonomy shared by the resolver, the orchestrator and the HTTP layer."""
from typing import Optional


class AnalysisError(Exception):
    """Base class for every error raised while analysing a questionnaire."""


# ----- Configuration (never retried) -----

class ConfigurationError(AnalysisError):
    pass


class MissingCredentialError(ConfigurationError):
    def __init__(self, provider: str, env_name: str):
        super().__init__(f"missing required env {env_name} for provider {provider}")
        self.provider = provider
        self.env_name = env_name


class InvalidBaseAddressError(ConfigurationError):
    def __init__(self, env_name: str, value: str):
        super().__init__(f"{env_name}: invalid URL: {value!r}")
        self.env_name = env_name
        self.value = value


# ----- Reachability (retried by the orchestrator, never by the resolver) -----

class ProviderUnavailableError(AnalysisError):
    pass


class PreflightError(ProviderUnavailableError):
    pass


class ModelRegistrationError(ProviderUnavailableError):
    pass


class InitializationExhaustedError(AnalysisError):
    def __init__(self, attempts: int, last_error: Optional[BaseException]):
        super().__init__(f"failed to initialize model after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


# ----- Generation -----

class AttemptError(AnalysisError):
    """Failure of a generation attempt.

    When raised as the terminal error of the generation phase, ``fallback``
    holds the fixed result callers may show instead of a real analysis.
    """

    def __init__(self, message: str, fallback=None):
        super().__init__(message)
        self.fallback = fallback


class GenerationError(AttemptError):
    pass


class OutputParseError(AttemptError):
    pass


class DeadlineExceededError(AnalysisError):
    def __init__(self, stage: str = ""):
        msg = "deadline exceeded" + (f" during {stage}" if stage else "")
        super().__init__(msg)
        self.stage = stage
