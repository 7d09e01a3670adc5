"""Run a read-modify-write unit of work with optimistic-concurrency retries."""
from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from .errors import StudioError, TransactionFailedError
from .extensions import db

logger = logging.getLogger(__name__)


def run_in_transaction(fn, *args, **kwargs):
    """Call ``fn`` and commit, retrying when a concurrent writer got there first.

    ``Client`` and ``Booking`` rows carry a version column, so a commit that
    would overwrite a newer row raises ``StaleDataError``; a racing first
    insert raises ``IntegrityError``. Either way the session is rolled back
    and ``fn`` runs again against fresh rows. Any other failure rolls back and
    propagates: domain errors as they are, database errors wrapped in
    :class:`TransactionFailedError`.
    """
    session = db.session
    max_attempts = current_app.config.get("TRANSACTION_MAX_ATTEMPTS", 5)
    name = getattr(fn, "__name__", "transaction")

    for attempt in range(1, max_attempts + 1):
        try:
            result = fn(*args, **kwargs)
            session.commit()
            return result
        except (StaleDataError, IntegrityError) as exc:
            session.rollback()
            if attempt == max_attempts:
                logger.error("%s gave up after %s conflicting attempts", name, attempt)
                raise TransactionFailedError("The database transaction failed.", detail=str(exc)) from exc
            logger.warning("%s conflicted on attempt %s/%s, retrying: %s", name, attempt, max_attempts, exc)
        except StudioError:
            session.rollback()
            raise
        except SQLAlchemyError as exc:
            session.rollback()
            raise TransactionFailedError("The database transaction failed.", detail=str(exc)) from exc
        except Exception:
            session.rollback()
            raise
