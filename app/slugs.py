"""Music Ingest Pipeline - Slug allocation.

Deterministic slugification plus bounded collision retry, shared by track,
collection and auto-created single collection creation.

Candidates for a base slug "x" are tried in order: x, x-2, x-3, ... x-N
where N = SLUG_MAX_ATTEMPTS. Running out of candidates is a ConflictError.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from app.config import SLUG_MAX_ATTEMPTS, SLUG_MAX_LENGTH
from app.db import is_unique_violation
from app.errors import ConflictError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.models import Collection, Track

logger = logging.getLogger(__name__)

_NON_ALNUM_RUN = re.compile(r"[^a-z0-9]+")


def slugify(text: str, max_length: int = SLUG_MAX_LENGTH) -> str:
    """Normalize text into a URL-safe slug.

    Lowercases, collapses every run of non [a-z0-9] characters into one
    hyphen, trims leading/trailing hyphens and truncates.

    Args:
        text: Basis string (filename stem, title, ...).
        max_length: Maximum slug length.

    Returns:
        The slug, possibly empty.
    """
    slug = _NON_ALNUM_RUN.sub("-", text.lower()).strip("-")
    return slug[:max_length]


def slug_candidates(base: str, max_attempts: int = SLUG_MAX_ATTEMPTS) -> Iterator[str]:
    """Yield base, base-2, base-3, ... up to max_attempts candidates."""
    yield base
    for attempt in range(2, max_attempts + 1):
        yield f"{base}-{attempt}"


def allocate_slug(
    basis: str,
    is_taken: Callable[[str], bool],
    fallback: str,
    max_attempts: int = SLUG_MAX_ATTEMPTS,
) -> str:
    """Allocate a unique slug.

    Pure with respect to storage: uniqueness is decided by the is_taken
    capability, so the allocator can be exercised without a database.

    Args:
        basis: Text the slug is derived from.
        is_taken: Returns True if a candidate collides.
        fallback: Used as the base when basis normalizes to "" (the
            entity's own identity key).
        max_attempts: Number of candidates to try.

    Returns:
        The first candidate that is not taken.

    Raises:
        ConflictError: If every candidate is taken.
    """
    base = slugify(basis) or fallback
    for candidate in slug_candidates(base, max_attempts):
        if not is_taken(candidate):
            return candidate
        logger.debug("Slug %r taken, trying next candidate", candidate)
    raise ConflictError(f"Could not allocate a unique slug for '{base}' after {max_attempts} attempts")


def insert_with_unique_slug(
    session: Session,
    entity: Track | Collection,
    basis: str,
    fallback: str,
    max_attempts: int = SLUG_MAX_ATTEMPTS,
) -> str:
    """Insert an entity, retrying on slug collisions.

    Each candidate is inserted inside its own SAVEPOINT. Only a UNIQUE
    violation on "<table>.slug" counts as a collision; any other storage
    error (including other unique constraints) propagates immediately.

    Note:
        This function does NOT commit. The row is flushed; commit is the
        caller's responsibility.

    Args:
        session: Active database session.
        entity: Unsaved Track or Collection; its slug attribute is set.
        basis: Text the slug is derived from.
        fallback: Base slug used when basis normalizes to "".
        max_attempts: Number of candidates to try.

    Returns:
        The slug the entity was stored with.

    Raises:
        ConflictError: If every candidate collides.
        IntegrityError: For any integrity failure other than a slug collision.
    """
    slug_column = f"{entity.__tablename__}.slug"

    def is_taken(candidate: str) -> bool:
        entity.slug = candidate
        try:
            with session.begin_nested():
                session.add(entity)
                session.flush()
        except IntegrityError as exc:
            if is_unique_violation(exc, slug_column):
                return True
            raise
        return False

    return allocate_slug(basis, is_taken, fallback, max_attempts)
