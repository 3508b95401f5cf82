from sqlmodel import SQLModel, create_engine, Session
from app.config import settings


def build_engine(url: str):
    if url.startswith("sqlite"):
        # sessions are handed across FastAPI's threadpool
        return create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        url,
        echo=False,
        pool_pre_ping=True,      # checks dead connections
        pool_recycle=1800        # refresh every 30 min
    )


engine = build_engine(settings.database_url)


def create_db_and_tables(bind=None):
    from app.models import (  # noqa: F401
        user, catalog_item, roster_entry, purchase, access_log, lesson_progress,
    )
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    with Session(engine) as session:
        yield session
