import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from retail_pos.errors import PersistenceError

logger = logging.getLogger(__name__)


def commit(session: Session) -> None:
    """Commit the session, or roll everything back and raise PersistenceError."""
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Write failed, transaction rolled back")
        raise PersistenceError(f"Could not save changes: {exc.__class__.__name__}") from exc
