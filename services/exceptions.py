"""
Domain errors raised by the compensation services.

Routers translate these into HTTP responses. Data-access failures are kept
distinct (DataStoreUnavailable) so callers can tell "no data" from
"store down".
"""
import logging
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class CompensationError(Exception):
    """Base class for compensation engine errors."""


class EntityNotFound(CompensationError):
    """Unknown teacher or controller id."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidRequest(CompensationError):
    """Request rejected before any read (user-actionable)."""


class InvalidWaiverRequest(InvalidRequest):
    """Waiver filter or reason rejected before any read."""


class WaiverStateError(CompensationError):
    """Apply attempted on a waiver request that was not previewed with the same filter."""


class ConcurrencyConflict(CompensationError):
    """A competing transaction kept winning the match-and-flip race."""


class DataStoreUnavailable(CompensationError):
    """The backing data store failed; distinct from an empty result."""


@contextmanager
def data_access(operation: str):
    """
    Wrap a block of reads/writes so SQLAlchemy failures surface as
    DataStoreUnavailable.

    Usage:
        with data_access("load lateness records"):
            rows = db.query(LatenessRecord)...
    """
    try:
        yield
    except SQLAlchemyError as e:
        logger.error("Data store failure during %s: %s", operation, e)
        raise DataStoreUnavailable(f"Data store unavailable during {operation}") from e
