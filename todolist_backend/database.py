import logging
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)


class Database:
    """
    Owns the engine and session factory for one store.

    Created once at startup and disposed at shutdown; request handlers get
    a fresh session per request through `session()`.
    """

    def __init__(self, url: str):
        self.url = url
        engine_kwargs = {}
        parsed = make_url(url)
        if parsed.get_backend_name() == "sqlite":
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if parsed.database in (None, "", ":memory:"):
                # every session must see the same in-memory database
                engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, **engine_kwargs)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database ready url=%s", self.engine.url.render_as_string(hide_password=True))

    def session(self) -> Iterator[Session]:
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("Database connections closed")
