from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session

from app.services.errors import StorageUnavailable

logger = logging.getLogger(__name__)


@contextmanager
def unit_of_work(session: Session) -> Iterator[Session]:
    """
    One atomic unit: commit on success, roll back on any error.
    Driver-level connectivity failures surface as StorageUnavailable; everything
    else propagates unchanged.
    """
    try:
        yield session
        session.commit()
    except (OperationalError, InterfaceError) as exc:
        session.rollback()
        logger.error("storage.unavailable", extra={"error": str(exc.orig or exc)})
        raise StorageUnavailable("The data store is temporarily unavailable.") from exc
    except BaseException:
        session.rollback()
        raise


@contextmanager
def reading(session: Session) -> Iterator[Session]:
    """Read path: only translate storage failures."""
    try:
        yield session
    except (OperationalError, InterfaceError) as exc:
        session.rollback()
        logger.error("storage.unavailable", extra={"error": str(exc.orig or exc)})
        raise StorageUnavailable("The data store is temporarily unavailable.") from exc
