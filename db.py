from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine


def make_engine(database_url: str, echo: bool = False) -> Engine:
    """Build the engine for ``database_url``.

    SQLite needs ``check_same_thread`` off because FastAPI runs sync routes
    in a threadpool; in-memory SQLite also needs a single shared connection.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def create_db_and_tables(engine: Engine) -> None:
    """Create all tables in the database if they don't exist."""
    # models must be imported so their tables are registered on the metadata
    import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session(request: Request) -> Generator[Session, None, None]:
    """Yield a database session bound to the application's engine."""
    with Session(request.app.state.engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_session)]
