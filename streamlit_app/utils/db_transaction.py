from functools import wraps
from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session
import logging
from utils.errors import DataStoreError, TransientDataStoreError


# Configure logging
logger = logging.getLogger(__name__)
logger.setLevel(logging.ERROR)
handler = logging.FileHandler("db_errors.log", delay=True)
formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
handler.setFormatter(formatter)
logger.addHandler(handler)

TRANSIENT_ERRORS = (OperationalError, PoolTimeoutError, ConnectionError, TimeoutError)


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, TRANSIENT_ERRORS):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def transactional(fn):
    @wraps(fn)
    def wrapper(db: Session, *args, **kwargs):
        try:
            return fn(db, *args, **kwargs)
        except Exception as e:
            db.rollback()
            logger.error(f"Database error in {fn.__name__}: {e}", exc_info=True)
            if is_transient(e):
                raise TransientDataStoreError(f"Database temporarily unavailable in {fn.__name__}") from e
            raise DataStoreError(f"Database operation failed in {fn.__name__}") from e

    return wrapper
