import os

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

load_dotenv()

EXAMS_DATABASE_URL = os.getenv("EXAMS_DATABASE_URL")
LOCAL_DATABASE_URL = "sqlite:///exams.db"

CLOSE_BATCH_SIZE = int(os.getenv("CLOSE_BATCH_SIZE", "500"))

TIMEOUT_SECONDS = 120


def _register_sqlite_pragmas(engine: Engine) -> None:
    """Enable foreign keys and let SQLAlchemy own BEGIN so savepoints work."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_db_engine(url: str, echo: bool = False) -> Engine:
    if url.startswith("sqlite"):
        in_memory = url in ("sqlite://", "sqlite:///:memory:")
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": TIMEOUT_SECONDS},
            echo=echo,
            poolclass=StaticPool if in_memory else NullPool,
        )
        _register_sqlite_pragmas(engine)
        return engine
    return create_engine(url, echo=echo, pool_pre_ping=True)


def get_engine(use_local: bool = True) -> Engine:
    if use_local:
        return create_db_engine(LOCAL_DATABASE_URL)
    if not EXAMS_DATABASE_URL:
        raise ValueError("EXAMS_DATABASE_URL missing")
    return create_db_engine(EXAMS_DATABASE_URL)


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
