import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

import crud
from config import Settings
from db import create_db_and_tables, make_engine
from errors import ServiceError
from models import Role, User
from routers import admin, auth, donations, drives, requests, users

logger = logging.getLogger(__name__)

HTTP_KINDS = {
    401: "NotAuthenticated",
    403: "NotAuthorized",
    404: "NotFound",
    405: "MethodNotAllowed",
}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def seed_admin(engine: Engine, settings: Settings) -> None:
    """Create the bootstrap administrator if one is configured and missing."""
    if not settings.admin_email or not settings.admin_password:
        return
    with Session(engine) as session:
        if crud.get_user_by_email(session, settings.admin_email) is not None:
            return
        admin_user = User(
            name=settings.admin_name,
            email=settings.admin_email,
            password_hash=auth.hash_password(settings.admin_password),
            role=Role.admin,
            is_verified=True,
        )
        crud.register_user(session, admin_user)
        logger.info("Created bootstrap admin %s", settings.admin_email)


def _error_body(kind: str, detail, fields=None) -> dict:
    return {"kind": kind, "detail": detail, "fields": fields or []}


async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.kind, exc.message, exc.fields),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = []
    messages = []
    for error in exc.errors():
        # drop the leading "body" / "query" / "path" segment
        loc = [str(part) for part in error.get("loc", ())[1:]]
        field = ".".join(loc) or str(error.get("loc", ("request",))[0])
        fields.append(field)
        messages.append(f"{field}: {error.get('msg')}")
    return JSONResponse(
        status_code=400,
        content=_error_body("ValidationError", "; ".join(messages), fields),
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(HTTP_KINDS.get(exc.status_code, "Error"), exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def internal_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=_error_body("InternalError", "Internal Server Error"),
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    engine = make_engine(settings.database_url, echo=settings.sql_echo)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        create_db_and_tables(engine)
        seed_admin(engine, settings)
        yield
        engine.dispose()

    app = FastAPI(title="ShareBloom", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.serializer = auth.make_serializer(settings.secret_key)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    @app.get("/api/health")
    def health():
        return {
            "message": "Server is running!",
            "time": datetime.now(timezone.utc).isoformat(),
        }

    app.include_router(auth.router, prefix="/api/auth")
    app.include_router(users.router, prefix="/api/users")
    app.include_router(donations.router, prefix="/api/donations")
    app.include_router(requests.router, prefix="/api/requests")
    app.include_router(drives.router, prefix="/api/drives")
    app.include_router(admin.router, prefix="/api/admin")

    return app


app = create_app()
