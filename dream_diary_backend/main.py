# dream_diary_backend/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dream_diary_backend.api.dream.routes import router as dream_router
from dream_diary_backend.api.health.routes import router as health_router
from dream_diary_backend.config import settings
from dream_diary_backend.dependencies import get_dream_repository
from dream_diary_backend.domain.errors import DreamDiaryError, StageFailed, ValidationFailed
from dream_diary_backend.infrastructure.db import bootstrap

logger = logging.getLogger(__name__)

_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "aiohttp", "sqlalchemy.engine", "multipart")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    repo = get_dream_repository()
    await repo.load()
    logger.info(f"Dream store ready ({type(repo).__name__})")
    yield
    await bootstrap.dispose_engine()


def _error_body(message: str, details: str | None = None, **extra) -> dict:
    body = {"success": False, "error": message, **extra}
    if details and not settings().is_production:
        body["details"] = details
    return body


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err["loc"][1:]) or str(err["loc"][0]), "msg": err["msg"]}
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"success": False, "errors": errors})

    @app.exception_handler(ValidationFailed)
    async def validation_failed_handler(request: Request, exc: ValidationFailed):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.message, "errors": exc.errors},
        )

    @app.exception_handler(StageFailed)
    async def stage_failed_handler(request: Request, exc: StageFailed):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.message, exc.details, dream_id=exc.dream_id),
        )

    @app.exception_handler(DreamDiaryError)
    async def domain_error_handler(request: Request, exc: DreamDiaryError):
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content=_error_body("Internal server error", str(exc)))


def create_app() -> FastAPI:
    cfg = settings()
    configure_logging(cfg.log_level)

    app = FastAPI(title="Dream Diary API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    app.include_router(health_router)
    app.include_router(dream_router)
    return app


app = create_app()
