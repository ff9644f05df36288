from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import get_settings


def _create_engine() -> Engine:
    settings = get_settings()
    connect_args: dict[str, object] = {}
    if settings.database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    eng = create_engine(settings.database_url, connect_args=connect_args)
    if settings.database_url.startswith("sqlite"):
        enable_sqlite_pragmas(eng)
    return eng


def _sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def enable_sqlite_pragmas(eng: Engine) -> None:
    # Category references are only enforced by SQLite with foreign_keys=ON.
    event.listen(eng, "connect", _sqlite_pragmas)


engine = _create_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def init_db(eng: Engine = engine) -> None:
    import models  # noqa: F401

    Base.metadata.create_all(eng)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

