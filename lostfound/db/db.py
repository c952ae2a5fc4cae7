from contextlib import contextmanager

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from lostfound.config import DATABASE_URL


def build_engine(url: str, **kwargs) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    db_engine = create_engine(url, connect_args=connect_args, **kwargs)

    if url.startswith("sqlite"):
        # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection
        @event.listens_for(db_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return db_engine


engine = build_engine(DATABASE_URL)


def get_session():
    with Session(engine) as session:
        yield session


def init_db(db_engine: Engine = None) -> None:
    # models must be imported so their tables are registered on the metadata
    from lostfound.models import account, claim, item, message, notification, profile  # noqa: F401

    SQLModel.metadata.create_all(db_engine or engine)


@contextmanager
def atomic(session: Session):
    """Commit everything done in the block, or nothing if any step raises."""
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
