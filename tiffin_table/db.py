import os
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./tiffin_table.db")

Base = declarative_base()


def make_engine(url: str, **kwargs) -> Engine:
    # For SQLite, enable check_same_thread=False since store calls run in a threadpool
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    engine = create_engine(url, future=True, **kwargs)

    # Ensure SQLite enforces foreign keys
    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    # Create tables if not existing. Older SQLite files are upgraded by migration/.
    from . import models  # noqa: F401  (registers tables on Base)

    Base.metadata.create_all(bind=engine)


engine = make_engine(DATABASE_URL)
SessionLocal = make_session_factory(engine)
