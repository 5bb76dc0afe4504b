# app/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.sync import router as sync_router
from app.core.config import settings
from app.db.session import init_db
from app.middleware.rate_limit_middleware import RateLimitMiddleware

logger = logging.getLogger(__name__)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Les erreurs de validation sont des 400 sur cette API"""
    logger.warning(f"Requête invalide sur {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


def create_app(create_tables: bool = True) -> FastAPI:
    logging.basicConfig(level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if create_tables:
            init_db()
        yield

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    # Middleware CORS d'abord
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=settings.CORS_ALLOW_METHODS,
        allow_headers=settings.CORS_ALLOW_HEADERS,
    )

    app.add_middleware(
        RateLimitMiddleware,
        request_limit=settings.RATE_LIMIT_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    @app.get("/")
    def root():
        return {"message": f"Backend {settings.APP_NAME} actif"}

    @app.get("/health")
    def health_check():
        """Endpoint de santé pour les load balancers"""
        return {"status": "healthy"}

    app.include_router(sync_router)
    return app


app = create_app()
