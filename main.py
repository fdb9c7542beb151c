from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import logging

from config import Settings, get_settings
from services.activity_log import ActivityLog
from services.relational_store import RelationalStore

# Import routers
from routers import auth, threads

logger = logging.getLogger('uvicorn.error')


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[RelationalStore] = None,
    activity_log: Optional[ActivityLog] = None,
) -> FastAPI:
    """
    Build the forum API.

    ``store`` and ``activity_log`` are created from ``settings`` at startup
    unless given; either way they are closed at shutdown.
    """
    settings = settings or get_settings()
    logger.setLevel(settings.LOG_LEVEL.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application startup: Initializing resources...")
        app.state.store = store
        if app.state.store is None:
            try:
                app.state.store = RelationalStore.from_url(
                    settings.DATABASE_URL, timeout=settings.STORE_TIMEOUT_SECONDS
                )
                logger.info("Relational store client initialized.")
            except Exception as e:
                logger.error(f"Failed to initialize relational store: {e}")
                app.state.store = None

        if app.state.store is not None:
            try:
                await app.state.store.init_schema()
                await app.state.store.seed_categories(settings.seed_category_names)
            except Exception as e:
                logger.error(f"Failed to prepare relational schema: {e}")

        app.state.activity_log = activity_log
        if app.state.activity_log is None:
            if settings.ACTIVITY_LOG_ENABLED:
                app.state.activity_log = ActivityLog.connect(
                    project=settings.FIRESTORE_PROJECT,
                    collection=settings.ACTIVITY_LOG_COLLECTION,
                    timeout=settings.STORE_TIMEOUT_SECONDS,
                )
            else:
                logger.info("Activity logs disabled by configuration.")
                app.state.activity_log = ActivityLog(None)

        logger.info(f"Mini Forum Backend API running at http://localhost:{settings.PORT}")
        logger.info(f"To test, go to: http://localhost:{settings.PORT}/api/threads")
        yield
        logger.info("Application shutdown: Cleaning up resources...")
        await app.state.activity_log.close()
        if app.state.store is not None:
            try:
                await app.state.store.close()
                logger.info("Relational store client closed.")
            except Exception as e:
                logger.error(f"Error closing relational store: {e}")

    app = FastAPI(title="Mini Forum Backend", lifespan=lifespan)
    app.state.settings = settings
    app.include_router(threads.router)
    app.include_router(auth.router)

    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
        return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(part) for part in err["loc"] if part != "body"), "message": err["msg"]}
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"error": "Missing or invalid fields.", "details": details})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": "Internal server error."})

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
