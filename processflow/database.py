import os

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

DEFAULT_DATABASE_URL = "postgresql://processflow@localhost/processflow"

# autoflush stays off: tree services flush explicitly between bulk position updates
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)

Base = declarative_base()

engine = None
_bound_url = None


def _get_database_url() -> str:
    return os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)


def _sqlite_enforce_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str) -> Engine:
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    sqlite_engine = create_engine(database_url, connect_args={"check_same_thread": False})
    event.listen(sqlite_engine, "connect", _sqlite_enforce_foreign_keys)
    return sqlite_engine


def configure_database() -> None:
    """Bind SessionLocal to DATABASE_URL; rebinds only when the URL changed."""
    global engine, _bound_url

    database_url = _get_database_url()
    if engine is not None and _bound_url == database_url:
        return

    engine = build_engine(database_url)
    SessionLocal.configure(bind=engine)
    _bound_url = database_url


configure_database()


def get_db():
    configure_database()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
