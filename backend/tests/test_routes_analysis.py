import json

from anketa.api.routes_analysis import get_analysis_service
from anketa.errors import DeadlineExceededError, GenerationError, InitializationExhaustedError
from anketa.schemas import ANALYSIS_FAILED, AnalysisResult

VALID_BODY = {
    "answers": [
        {"question_text": "Why did you choose this major?", "answer": "I like math", "time": "35s"},
        {"question_text": "Where do you see yourself in 5 years?", "answer": "Data science", "time": "41s"},
    ]
}


class FakeAnalysisService:
    def __init__(self, settings, result=None, error=None):
        self.settings = settings
        self.result = result
        self.error = error
        self.calls = []

    async def analyze(self, answers, deadline):
        self.calls.append({"answers": answers, "remaining": deadline.remaining()})
        if self.error is not None:
            raise self.error
        return self.result


def _install(client, **kwargs):
    fake = FakeAnalysisService(client.app.state.settings, **kwargs)
    client.app.dependency_overrides[get_analysis_service] = lambda: fake
    return fake


def test_healthz(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.text == "ok"
    assert r.headers.get("X-Request-ID")


def test_request_id_is_echoed(client):
    r = client.get("/healthz", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"


def test_analysis_happy_path(client):
    fake = _install(client, result=AnalysisResult(detailed_report="Full report", resume="Summary"))

    r = client.post("/analysis", json=VALID_BODY)
    assert r.status_code == 200
    assert r.json() == {"detailed_report": "Full report", "resume": "Summary"}

    answers = fake.calls[0]["answers"]
    assert [a.question_text for a in answers] == [a["question_text"] for a in VALID_BODY["answers"]]
    # request deadline comes from settings (5 minutes by default)
    assert 290 < fake.calls[0]["remaining"] <= 300


def test_unsupported_media_type(client):
    fake = _install(client)
    r = client.post("/analysis", content=json.dumps(VALID_BODY), headers={"Content-Type": "text/plain"})
    assert r.status_code == 415
    assert r.json()["error"] == "unsupported_media_type"
    assert fake.calls == []


def test_malformed_json(client):
    _install(client)
    r = client.post("/analysis", content="{not json", headers={"Content-Type": "application/json"})
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_request"


def test_unknown_fields_rejected(client):
    _install(client)
    body = {"answers": [{"question_text": "Q", "answer": "A", "time": "1s", "score": 5}]}
    r = client.post("/analysis", json=body)
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_request"

    r = client.post("/analysis", json={**VALID_BODY, "student": "bob"})
    assert r.status_code == 400


def test_empty_answers(client):
    fake = _install(client)
    r = client.post("/analysis", json={"answers": []})
    assert r.status_code == 400
    assert r.json() == {"error": "validation_error", "details": "answers must contain at least one element"}
    assert fake.calls == []


def test_blank_first_question(client):
    _install(client)
    body = {"answers": [{"question_text": "   ", "answer": "A", "time": "1s"}]}
    r = client.post("/analysis", json=body)
    assert r.status_code == 400
    assert r.json()["details"] == "question_text is required"


def test_timeout_maps_to_504(client):
    _install(client, error=DeadlineExceededError("generation"))
    r = client.post("/analysis", json=VALID_BODY)
    assert r.status_code == 504
    assert r.json()["error"] == "analysis_timeout"


def test_exhausted_initialization_maps_to_500(client):
    _install(client, error=InitializationExhaustedError(5, RuntimeError("boom")))
    r = client.post("/analysis", json=VALID_BODY)
    assert r.status_code == 500
    data = r.json()
    assert data["error"] == "analysis_failed"
    assert "5 attempts" in data["details"]


def test_generation_failure_maps_to_500(client):
    _install(client, error=GenerationError("generation failed after 5 attempts: 502", fallback=ANALYSIS_FAILED))
    r = client.post("/analysis", json=VALID_BODY)
    assert r.status_code == 500
    assert r.json()["error"] == "analysis_failed"


def test_end_to_end_with_mocked_provider(client, monkeypatch):
    # Real orchestrator and resolver; only the network edges are faked
    from types import SimpleNamespace

    from anketa import providers
    from conftest import FakeSDK, make_fake_async_client

    preflight_calls = []
    reply = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(
            content='```json\n{"detailed_report": "Motivated student", "resume": "Good fit"}\n```'
        ))],
        usage=SimpleNamespace(prompt_tokens=50, completion_tokens=60),
    )
    sdk = FakeSDK([reply])
    monkeypatch.setattr(providers.httpx, "AsyncClient", make_fake_async_client(preflight_calls))
    monkeypatch.setattr(providers, "AsyncOpenAI", lambda **kwargs: sdk)

    r = client.post("/analysis", json=VALID_BODY)
    assert r.status_code == 200
    assert r.json() == {"detailed_report": "Motivated student", "resume": "Good fit"}
    assert preflight_calls[0]["url"] == "https://api.openai.com/v1/models"
    assert sdk.calls[0]["model"] == "gpt-4o"
    assert "Question - 2." in sdk.calls[0]["messages"][1]["content"]
