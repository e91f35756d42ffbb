from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.orm import Session

T = TypeVar("T")


def run_in_transaction(db: Session, work: Callable[[Session], T]) -> T:
    """Run ``work`` as one atomic unit.

    Commits on success. Any exception, cancellation included, rolls the whole
    unit back before it propagates.
    """
    if not db.in_transaction():
        with db.begin():
            return work(db)

    # Session already autobegun by earlier reads: join it and commit it
    try:
        result = work(db)
        db.commit()
    except BaseException:
        db.rollback()
        raise
    return result
