"""FastAPI entrypoint: wires config, container, routes, and lifecycle hooks."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from time import perf_counter

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from doze.api.http.health import router as health_router
from doze.api.http.session import router as session_router
from doze.api.stream.sse import router as sse_router
from doze.core.config import Settings
from doze.core.container import AppContainer, build_container
from doze.core.lifecycle import on_shutdown, on_startup
from doze.infra.observability.logger import get_logger, setup_logging
from doze.session.errors import SessionError

access_logger = get_logger("uvicorn.access")
logger = get_logger(__name__)


def _mount_web(app: FastAPI, web_path: Path) -> None:
    root = web_path.resolve()
    index = root / "index.html"

    # Registered last so API routes win; unknown paths fall back to index.html.
    @app.get("/{asset_path:path}", include_in_schema=False)
    def web(asset_path: str) -> FileResponse:
        candidate = (root / asset_path).resolve()
        if candidate.is_file() and candidate.is_relative_to(root):
            return FileResponse(candidate)
        return FileResponse(index)


def create_app(
    settings: Settings | None = None,
    container: AppContainer | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)
    container = container or build_container(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        on_startup(container)
        try:
            yield
        finally:
            on_shutdown(container)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        start = perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = (perf_counter() - start) * 1000
            query = f"?{request.url.query}" if request.url.query else ""
            path = f"{request.url.path}{query}"
            client_ip = request.client.host if request.client else "-"
            access_logger.info(
                '%s "%s %s" %s %.2fms',
                client_ip,
                request.method,
                path,
                status_code,
                duration_ms,
            )

    @app.exception_handler(SessionError)
    async def session_error(_: Request, exc: SessionError) -> JSONResponse:
        logger.warning("api.session_error code=%s state=%s error=%s", exc.code, exc.state, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "code": exc.code, "state": exc.state},
        )

    app.include_router(health_router)
    app.include_router(session_router)
    app.include_router(sse_router)

    if settings.web_path is not None:
        if settings.web_path.is_dir():
            _mount_web(app, settings.web_path)
        else:
            logger.warning("web.path_missing path=%s", settings.web_path)

    return app


def run() -> None:
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


app = create_app()
