"""Mapping between external UUIDs and internal surrogate keys."""

import re

from sqlalchemy import select
from sqlalchemy.orm import Session

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_valid_uuid(value) -> bool:
    """Return True if ``value`` is a UUID string in canonical 8-4-4-4-12 form."""
    return isinstance(value, str) and _UUID_RE.match(value) is not None


def normalize_uuid(value: str) -> str:
    """Return the lower case form under which UUIDs are stored."""
    return value.lower()


def resolve_id(
    db: Session, model, external_uuid: str, include_deleted: bool = False
) -> int | None:
    """
    Look up the surrogate key of the row with the given external UUID.

    Args:
        db (Session): Database session.
        model: Mapped class carrying ``id``, ``external_uuid`` and ``deleted``.
        external_uuid (str): UUID exposed by the API.
        include_deleted (bool): Also match soft-deleted rows.

    Returns:
        int | None: The internal id, or ``None`` if no row matches.
    """
    stmt = select(model.id).where(model.external_uuid == normalize_uuid(external_uuid))
    if not include_deleted:
        stmt = stmt.where(model.deleted.is_(False))
    return db.execute(stmt).scalar_one_or_none()


def resolve_uuid(db: Session, model, internal_id: int) -> str | None:
    """Return the external UUID of the row with the given internal id."""
    return db.execute(
        select(model.external_uuid).where(model.id == internal_id)
    ).scalar_one_or_none()
