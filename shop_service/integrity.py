# shop_service/integrity.py

"""
Referential integrity checks wrapped around the store's write operations.

Every check runs before anything is mutated, and every write call runs inside
`atomic`, so a failing write leaves the database as it found it.
"""

import logging
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import (
    ForeignKeyViolation,
    InvalidArgument,
    ReferentialConflict,
    UniqueConstraintViolation,
)
from .models import Customer

logger = logging.getLogger(__name__)


@contextmanager
def atomic(db: Session):
    """
    Run one write call as a single transaction: commit when the block
    finishes, roll back and re-raise on any error. Constraint failures the
    checks did not catch come out as ShopError subclasses.
    """
    try:
        yield db
        db.commit()
    except IntegrityError as e:
        db.rollback()
        if _is_unique_email_error(e):
            raise UniqueConstraintViolation("A customer with this email already exists") from e
        raise InvalidArgument(f"write violates a database constraint: {e.orig}") from e
    except Exception:
        db.rollback()
        raise


def _is_unique_email_error(error: IntegrityError) -> bool:
    text = str(error.orig).lower()
    return "unique" in text and "email" in text


def require_exists(db: Session, model, record_id):
    """Return the referenced record or raise ForeignKeyViolation naming it."""
    record = db.get(model, record_id)
    if record is None:
        raise ForeignKeyViolation(model.__tablename__, record_id)
    return record


def require_unique_email(db: Session, email: str, exclude_id: int = None):
    query = db.query(Customer.id).filter(Customer.email == email)
    if exclude_id is not None:
        query = query.filter(Customer.id != exclude_id)
    if query.first() is not None:
        raise UniqueConstraintViolation(f"Email '{email}' is already registered")


def ensure_unreferenced(db: Session, target, referencing_model, fk_column):
    """
    Refuse to delete `target` while any `referencing_model` row points at it
    through `fk_column`.
    """
    count = db.query(referencing_model).filter(fk_column == target.id).count()
    if count:
        logger.debug(
            "Delete of %s %s blocked by %d %s row(s)",
            target.__tablename__, target.id, count, referencing_model.__tablename__,
        )
        raise ReferentialConflict(
            f"{target.__tablename__} {target.id} is still referenced by "
            f"{count} {referencing_model.__tablename__} record(s)"
        )
