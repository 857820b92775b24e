import logging
import time
import uuid
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from .analysis import AnalysisService
from .api.routes_analysis import router as analysis_router
from .config import Settings

logger = logging.getLogger(__name__)

load_dotenv()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(title="Questionnaire AI Analysis")
    app.state.settings = settings
    app.state.analysis_service = AnalysisService(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_log(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        started = time.monotonic()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info(f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f}ms)")
        return response

    @app.get("/healthz", response_class=PlainTextResponse)
    def healthz():
        return "ok"

    app.include_router(analysis_router)

    logger.info(f"Configuration: provider={settings.provider.value} model={settings.qualified_model}")
    return app


app = create_app()


def run():
    import uvicorn

    settings: Settings = app.state.settings
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logger.info(f"Server starting on http://{settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
