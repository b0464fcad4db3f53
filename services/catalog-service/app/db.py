import os
from sqlalchemy import create_engine, text, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import NullPool

DATABASE_URL = os.environ["DATABASE_URL"]
DB_SCHEMA = os.getenv("DB_SCHEMA", "catalog")

IS_POSTGRES = DATABASE_URL.startswith(("postgresql", "postgres"))
IS_SQLITE = DATABASE_URL.startswith("sqlite")

engine = create_engine(
    DATABASE_URL,
    poolclass=NullPool,   # Lambda-friendly
    pool_pre_ping=True,
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


class Base(DeclarativeBase):
    pass


def _quote_ident(ident: str) -> str:
    return '"' + ident.replace('"', '""') + '"'


@event.listens_for(engine, "connect")
def _on_connect(dbapi_conn, _):
    cur = dbapi_conn.cursor()
    if IS_POSTGRES:
        cur.execute(f"SET search_path TO {_quote_ident(DB_SCHEMA)}")
    elif IS_SQLITE:
        # SQLite ignores ON DELETE CASCADE unless asked
        cur.execute("PRAGMA foreign_keys=ON")
        # let SQLAlchemy emit BEGIN itself so SAVEPOINT/rollback behave
        dbapi_conn.isolation_level = None
    cur.close()


@event.listens_for(engine, "begin")
def _on_begin(conn):
    if IS_SQLITE:
        conn.exec_driver_sql("BEGIN")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_schema():
    """
    Optional helper. Prefer migrations/deploy-time for Lambda.
    """
    if not IS_POSTGRES:
        return
    schema = _quote_ident(DB_SCHEMA)
    with engine.begin() as conn:
        conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema}"))
        conn.execute(text(f"SET search_path TO {schema}"))
