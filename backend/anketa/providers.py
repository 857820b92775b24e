"""
Provider resolution for the analysis service.

Turns a provider identity into a ready ``ModelClient``: credential lookup,
base URL validation, a cheap ``GET <base>/models`` preflight for
OpenAI-compatible endpoints and, for DeepSeek, explicit model registration.
All three providers are reached through the OpenAI SDK (Anthropic exposes an
OpenAI-compatible endpoint).
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Dict, Optional

import httpx
import openai
from openai import AsyncOpenAI
from pydantic import ValidationError

from .config import BASIC_TEXT, PROVIDER_PROFILES, ModelSpec, Provider, Settings, qualify_model
from .deadline import Deadline
from .errors import (
    DeadlineExceededError,
    GenerationError,
    InvalidBaseAddressError,
    MissingCredentialError,
    ModelRegistrationError,
    OutputParseError,
    PreflightError,
)
from .schemas import AnalysisResult

logger = logging.getLogger(__name__)

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


def validate_base_url(raw: str, env_name: str) -> httpx.URL:
    try:
        url = httpx.URL(raw)
    except (httpx.InvalidURL, TypeError, ValueError) as exc:
        raise InvalidBaseAddressError(env_name, raw) from exc
    if not url.scheme or not url.host:
        raise InvalidBaseAddressError(env_name, raw)
    return url


async def preflight(
    provider: Provider,
    base_url: str,
    api_key: str,
    deadline: Deadline,
    timeout: float = 5.0,
) -> None:
    """Light reachability check of an OpenAI-compatible API: GET <base>/models"""
    deadline.check(f"{provider.value} preflight")
    url = base_url.rstrip("/") + "/models"
    headers = {"Authorization": f"Bearer {api_key}", "Accept": "application/json"}
    try:
        async with httpx.AsyncClient(timeout=deadline.bound(timeout)) as client:
            resp = await client.get(url, headers=headers)
    except httpx.TimeoutException as exc:
        if deadline.expired():
            raise DeadlineExceededError(f"{provider.value} preflight") from exc
        raise PreflightError(f"{provider.value} preflight timed out: {exc}") from exc
    except httpx.HTTPError as exc:
        raise PreflightError(f"{provider.value} preflight failed: {exc}") from exc
    if resp.status_code < 200 or resp.status_code >= 300:
        raise PreflightError(
            f"{provider.value} preflight failed: unexpected status {resp.status_code} from {url}"
        )


def extract_json_object(text: str) -> str:
    """Return the first JSON object found in a model reply."""
    match = _JSON_FENCE_RE.search(text)
    if match:
        return match.group(1).strip()

    stripped = text.strip()
    if stripped.startswith("{") and stripped.endswith("}"):
        return stripped

    start = stripped.find("{")
    end = stripped.rfind("}")
    if 0 <= start < end:
        candidate = stripped[start : end + 1]
        try:
            json.loads(candidate)
            return candidate
        except json.JSONDecodeError:
            pass

    raise OutputParseError("could not locate a JSON object in the model response")


@dataclass
class Usage:
    input_tokens: int
    output_tokens: int


@dataclass
class Generation:
    text: str
    model: str
    usage: Optional[Usage] = None

    def output(self) -> AnalysisResult:
        json_text = extract_json_object(self.text)
        try:
            return AnalysisResult.model_validate_json(json_text)
        except ValidationError as exc:
            raise OutputParseError(f"model output does not match the analysis schema: {exc}") from exc


class ModelClient:
    """Handle bound to one provider, able to run generation calls.

    Models are addressed as ``<provider>/<model>``. Providers that require
    registration only accept models defined through :meth:`define_model`.
    The underlying SDK client owns a connection pool; call :meth:`aclose`
    once the client is no longer needed.
    """

    def __init__(self, provider: Provider, sdk: AsyncOpenAI, *, requires_registration: bool = False,
                 json_mode: bool = True):
        self.provider = provider
        self._sdk = sdk
        self._requires_registration = requires_registration
        self._json_mode = json_mode
        self._models: Dict[str, ModelSpec] = {}

    def define_model(self, spec: ModelSpec) -> None:
        self._models[qualify_model(self.provider, spec.name)] = spec

    def is_defined(self, model: str) -> bool:
        return model in self._models

    async def aclose(self) -> None:
        await self._sdk.close()

    def _bare_name(self, model: str) -> str:
        prefix, sep, name = model.partition("/")
        if not sep or prefix != self.provider.value or not name:
            raise GenerationError(f"model {model!r} is not served by provider {self.provider.value}")
        if self._requires_registration and not self.is_defined(model):
            raise GenerationError(f"model {model!r} is not registered for provider {self.provider.value}")
        return name

    async def generate(self, *, model: str, system: str, prompt: str, deadline: Deadline) -> Optional[Generation]:
        name = self._bare_name(model)
        spec = self._models.get(model)
        supports = spec.supports if spec is not None else BASIC_TEXT
        deadline.check("generation")

        if supports.system_role:
            messages = [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ]
        else:
            messages = [{"role": "user", "content": f"{system}\n\n{prompt}"}]
        kwargs = {}
        if self._json_mode and supports.json_output:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self._sdk.chat.completions.create(
                model=name,
                messages=messages,
                timeout=deadline.bound(None),
                **kwargs,
            )
        except openai.APITimeoutError as exc:
            if deadline.expired():
                raise DeadlineExceededError("generation") from exc
            raise GenerationError(f"{self.provider.value} generation timed out: {exc}") from exc
        except openai.OpenAIError as exc:
            raise GenerationError(f"{self.provider.value} generation failed: {exc}") from exc

        if response is None or not response.choices:
            return None
        content = response.choices[0].message.content
        if content is None:
            return None

        usage = None
        if response.usage is not None:
            usage = Usage(
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens,
            )
        return Generation(text=content, model=model, usage=usage)


class ProviderResolver:
    def __init__(self, settings: Settings):
        self._settings = settings

    async def resolve(self, provider: Provider, model_hint: str, deadline: Deadline) -> ModelClient:
        profile = PROVIDER_PROFILES[provider]

        api_key = self._settings.credential(provider)
        if not api_key:
            raise MissingCredentialError(provider.value, profile.credential_env)

        base_url = profile.default_base_url
        override = self._settings.base_url_override(provider)
        if override:
            validate_base_url(override, profile.base_url_env)
            base_url = override

        if self._settings.runs_preflight(provider):
            await preflight(provider, base_url, api_key, deadline,
                            timeout=self._settings.preflight_timeout_seconds)

        sdk = AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=profile.sdk_max_retries)
        client = ModelClient(
            provider,
            sdk,
            requires_registration=profile.requires_registration,
            json_mode=profile.json_mode,
        )

        if profile.requires_registration:
            for spec in profile.models:
                client.define_model(spec)
            # sanity-check: every model, including the requested one, is visible in the registry
            expected = [qualify_model(provider, spec.name) for spec in profile.models]
            expected.append(qualify_model(provider, model_hint))
            missing = [m for m in expected if not client.is_defined(m)]
            if missing:
                await client.aclose()
                raise ModelRegistrationError(
                    f"{provider.value} models are not registered: {', '.join(missing)}"
                )

        logger.info(f"Resolved provider {provider.value} at {base_url}")
        return client
