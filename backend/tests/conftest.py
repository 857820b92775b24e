import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure backend package is importable
backend_root = Path(__file__).resolve().parents[1]
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))


class FakeSDK:
    """Stand-in for AsyncOpenAI: returns queued chat completion replies."""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls = []
        self.closed = False
        self.chat = self
        self.completions = self

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def close(self):
        self.closed = True


class FakeHTTPResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code


def make_fake_async_client(calls, status_code=200, error=None):
    """Build a replacement for httpx.AsyncClient that records GET calls."""

    class FakeAsyncClient:
        def __init__(self, *args, **kwargs):
            self.kwargs = kwargs

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def get(self, url, headers=None):
            calls.append({"url": url, "headers": headers, "timeout": self.kwargs.get("timeout")})
            if error is not None:
                raise error
            return FakeHTTPResponse(status_code)

    return FakeAsyncClient


@pytest.fixture
def settings():
    from anketa.config import Provider, Settings  # type: ignore

    return Settings(
        provider=Provider.OPENAI,
        model_name="gpt-4o",
        credentials={
            Provider.OPENAI: "sk-openai",
            Provider.ANTHROPIC: "sk-anthropic",
            Provider.DEEPSEEK: "sk-deepseek",
        },
    )


@pytest.fixture
def client(monkeypatch, settings):
    """Provide a FastAPI TestClient built around isolated settings."""
    # Avoid accidental usage of real API keys during tests
    monkeypatch.setenv("DEEPSEEK_API_KEY", "")
    monkeypatch.setenv("OPENAI_API_KEY", "")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "")
    monkeypatch.setenv("CORS_ORIGINS", "*")

    from anketa.main import create_app  # type: ignore

    app = create_app(settings)
    return TestClient(app)
