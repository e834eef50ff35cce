from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from backend.app.config import DATABASE_URL

# execution option marking an engine (or connection) as report-only
READ_ONLY = "replenishment_read_only"


def make_engine(url: str, **kwargs) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True, **kwargs)

    connect_args = kwargs.pop("connect_args", {})
    connect_args.setdefault("check_same_thread", False)
    connect_args.setdefault("timeout", 30)
    engine = create_engine(url, connect_args=connect_args, **kwargs)

    # pysqlite recipe: let SQLAlchemy emit BEGIN itself so SAVEPOINT works.
    # Writers take the write lock up front so they queue on BEGIN instead of
    # failing on lock upgrade; read-only connections use a deferred BEGIN.
    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        if conn.get_execution_options().get(READ_ONLY):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def read_only(bind: Engine) -> Engine:
    """Same pool, no up-front write lock on SQLite. Postgres ignores the option."""
    return bind.execution_options(**{READ_ONLY: True})


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
ReadSessionLocal = sessionmaker(bind=read_only(engine), autoflush=False, autocommit=False)
