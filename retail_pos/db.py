from typing import Iterator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session, create_engine

from retail_pos import config

connect_args = {"check_same_thread": False} if config.DB_URL.startswith("sqlite") else {}
engine = create_engine(config.DB_URL, echo=False, connect_args=connect_args)


def enable_sqlite_foreign_keys(target: Engine) -> None:
    if target.url.get_backend_name() != "sqlite":
        return

    @event.listens_for(target, "connect")
    def _set_sqlite_pragmas(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()


enable_sqlite_foreign_keys(engine)


def init_db(target: Engine = None):
    # register tables on the metadata
    from retail_pos import models  # noqa: F401

    SQLModel.metadata.create_all(target or engine)


def get_session() -> Iterator[Session]:
    with Session(engine) as session:
        yield session
