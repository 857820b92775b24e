"""
Process configuration for the questionnaire analysis service.

Values are read once from the environment (``.env`` is loaded by main.py via
python-dotenv) into an immutable ``Settings`` object that is passed down to
the resolver and the orchestrator. Nothing below main.py reads os.environ.
"""
import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Provider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    DEEPSEEK = "deepseek"


@dataclass(frozen=True)
class ModelSupports:
    system_role: bool = True
    json_output: bool = True


BASIC_TEXT = ModelSupports()
# deepseek-reasoner rejects response_format=json_object
REASONING_TEXT = ModelSupports(json_output=False)


@dataclass(frozen=True)
class ModelSpec:
    name: str
    label: str
    supports: ModelSupports = BASIC_TEXT


@dataclass(frozen=True)
class ProviderProfile:
    provider: Provider
    credential_env: str
    base_url_env: str
    default_base_url: str
    preflight: bool = False
    requires_registration: bool = False
    models: Tuple[ModelSpec, ...] = ()
    sdk_max_retries: int = 0
    json_mode: bool = True
    default_model: str = ""


PROVIDER_PROFILES: Dict[Provider, ProviderProfile] = {
    Provider.OPENAI: ProviderProfile(
        provider=Provider.OPENAI,
        credential_env="OPENAI_API_KEY",
        base_url_env="OPENAI_BASE_URL",
        default_base_url="https://api.openai.com/v1",
        preflight=True,
        default_model="gpt-4o-mini",
    ),
    Provider.ANTHROPIC: ProviderProfile(
        provider=Provider.ANTHROPIC,
        credential_env="ANTHROPIC_API_KEY",
        base_url_env="ANTHROPIC_BASE_URL",
        default_base_url="https://api.anthropic.com/v1/",
        json_mode=False,
        default_model="claude-sonnet-4-20250514",
    ),
    Provider.DEEPSEEK: ProviderProfile(
        provider=Provider.DEEPSEEK,
        credential_env="DEEPSEEK_API_KEY",
        base_url_env="DEEPSEEK_BASE_URL",
        default_base_url="https://api.deepseek.com/v1",
        preflight=True,
        requires_registration=True,
        models=(
            ModelSpec("deepseek-chat", "DeepSeek Chat"),
            ModelSpec("deepseek-reasoner", "DeepSeek Reasoner", REASONING_TEXT),
        ),
        sdk_max_retries=2,
        default_model="deepseek-chat",
    ),
}

# Identity substituted after repeated initialization failures
FALLBACK_PROVIDER = Provider.DEEPSEEK
FALLBACK_MODEL = "deepseek/deepseek-chat"


def qualify_model(provider: Provider, model_name: str) -> str:
    """Return ``<provider>/<model>``; names that already carry a prefix are kept."""
    name = (model_name or "").strip()
    if "/" in name:
        return name
    return f"{provider.value}/{name}"


def _env_flag(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_or(env: Mapping[str, str], key: str, fallback: str) -> str:
    val = (env.get(key) or "").strip()
    return val or fallback


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    provider: Provider = Provider.DEEPSEEK
    model_name: str = Field(default=FALLBACK_MODEL, min_length=1)

    credentials: Dict[Provider, Optional[str]] = Field(default_factory=dict)
    base_urls: Dict[Provider, Optional[str]] = Field(default_factory=dict)
    openai_preflight: bool = True

    max_attempts: int = Field(default=5, ge=1, le=10)
    fallback_after_failures: int = Field(default=2, ge=0)
    backoff_base_seconds: float = Field(default=0.2, ge=0)
    preflight_timeout_seconds: float = Field(default=5.0, gt=0)
    request_timeout_seconds: float = Field(default=300.0, gt=0)

    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"]
    )
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    @model_validator(mode="before")
    @classmethod
    def _default_model_for_provider(cls, data):
        if not isinstance(data, dict) or (data.get("model_name") or "").strip():
            return data
        try:
            provider = Provider(data.get("provider", Provider.DEEPSEEK))
        except ValueError:
            # unknown provider is reported by field validation
            return data
        return {**data, "model_name": PROVIDER_PROFILES[provider].default_model}

    @model_validator(mode="after")
    def _model_matches_provider(self) -> "Settings":
        prefix, sep, name = self.model_name.strip().partition("/")
        if sep and (prefix != self.provider.value or not name):
            raise ValueError(
                f"model {self.model_name!r} does not belong to provider {self.provider.value}"
            )
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        origins = [o.strip() for o in (env.get("CORS_ORIGINS") or "").split(",") if o.strip()]
        data = {
            "provider": _env_or(env, "LLM_PROVIDER", Provider.DEEPSEEK.value).lower(),
            "model_name": (env.get("LLM_MODEL") or "").strip(),
            "credentials": {p: env.get(prof.credential_env) for p, prof in PROVIDER_PROFILES.items()},
            "base_urls": {p: env.get(prof.base_url_env) for p, prof in PROVIDER_PROFILES.items()},
            "openai_preflight": _env_flag(env.get("OPENAI_PREFLIGHT"), True),
            "request_timeout_seconds": _env_or(env, "ANALYSIS_TIMEOUT_SECONDS", "300"),
            "max_attempts": _env_or(env, "ANALYSIS_MAX_ATTEMPTS", "5"),
            "host": _env_or(env, "HOST", "0.0.0.0"),
            "port": _env_or(env, "PORT", "8080"),
            "log_level": _env_or(env, "LOG_LEVEL", "INFO").upper(),
        }
        if origins:
            data["cors_origins"] = origins
        return cls.model_validate(data)

    def credential(self, provider: Provider) -> Optional[str]:
        value = self.credentials.get(provider)
        if value is None:
            return None
        return value.strip() or None

    def base_url_override(self, provider: Provider) -> Optional[str]:
        value = self.base_urls.get(provider)
        if value is None:
            return None
        return value.strip() or None

    def runs_preflight(self, provider: Provider) -> bool:
        if provider is Provider.OPENAI:
            return self.openai_preflight
        return PROVIDER_PROFILES[provider].preflight

    @property
    def qualified_model(self) -> str:
        return qualify_model(self.provider, self.model_name)
