from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from hms.core import config


def _engine_options(database_url: str) -> dict:
    options = {'echo': config.DATABASE_ECHO}
    if database_url.startswith('sqlite'):
        # FastAPI runs sync handlers in a threadpool.
        options['connect_args'] = {'check_same_thread': False}
    return options


engine = create_engine(config.DATABASE_URL, **_engine_options(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def init_db() -> None:
    # Import for the side effect of registering every table on Base.metadata.
    from hms.models import appointment, doctor, medical_record, patient, user  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def format_display_id(prefix: str, primary_key: int) -> str:
    """Human readable ID derived from the row's primary key, e.g. ``D00007``."""
    return f'{prefix}{primary_key:05d}'
