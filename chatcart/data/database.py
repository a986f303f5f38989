# chatcart/data/database.py
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from chatcart.utils.logging import get_logger

logger = get_logger(__name__)

Base = declarative_base()


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _enable_immediate_transactions(engine: Engine) -> None:
    # SQLite ignores FOR UPDATE. BEGIN IMMEDIATE takes the write lock when the
    # transaction starts, so two cart transactions can never interleave.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """Engine and session factory for one database URL."""

    def __init__(self, url: str, echo: bool = False, busy_timeout: float = 30.0):
        self.url = url

        if _is_sqlite(url):
            self.engine = create_engine(
                url,
                echo=echo,
                connect_args={"check_same_thread": False, "timeout": busy_timeout},
            )
            _enable_immediate_transactions(self.engine)
        else:
            self.engine = create_engine(url, echo=echo, pool_pre_ping=True)

        self.session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )

    def create_all(self) -> None:
        # modele musza byc zaimportowane zanim metadata zna tabele
        import chatcart.data.models  # noqa: F401

        logger.info(f"Creating tables: {list(Base.metadata.tables.keys())}")
        Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()
