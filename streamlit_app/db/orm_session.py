from contextlib import contextmanager
from sqlalchemy.orm import Session, sessionmaker
from db.base import get_session_factory


@contextmanager
def get_session(factory: sessionmaker | None = None):
    """Yield a session from `factory`, defaulting to the app-wide factory."""
    SessionLocal = factory or get_session_factory()
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()
