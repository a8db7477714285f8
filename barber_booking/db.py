# barber_booking/db.py

from sqlmodel import SQLModel, create_engine, Session

from .config import get_settings

settings = get_settings()

# SQLite needs check_same_thread off when shared with FastAPI's threadpool
connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(
    settings.database_url,
    echo=False,
    connect_args=connect_args,
)


def create_db_and_tables():
    SQLModel.metadata.create_all(engine)


# Dependency: one session per request
def get_session():
    with Session(engine) as session:
        yield session
