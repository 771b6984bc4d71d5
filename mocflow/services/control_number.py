"""
Control-Number Generator

Generates human-readable, type-and-year scoped identifiers:
  - Standard EMOC:  EMOC-{YEAR}-{SEQ:04d}    (e.g. EMOC-2025-0001)
  - Bypass EMOC:    BYPASS-{YEAR}-{SEQ:04d}
  - OMOC:           OMOC-{YEAR}-{SEQ:04d}
  - DMOC:           DMOC-{YEAR}-{SEQ:04d}    (MOC type dmoc and DmocRequest share it)

The sequence comes from a per-(prefix, year) counter row that is advanced
with an in-place UPDATE inside the caller's transaction.  Counting existing
rows is not used: two writers could observe the same count, and deleting a
draft would hand its number out again.  The counter never goes backwards.

Callers commit; this module only flushes.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError

from mocflow.core.exceptions import ValidationError
from mocflow.models import db
from mocflow.models.moc import CONTROL_NUMBER_PREFIXES
from mocflow.models.sequence import ControlNumberCounter

logger = logging.getLogger(__name__)

DMOC_PREFIX = CONTROL_NUMBER_PREFIXES["dmoc"]

# Dialects with INSERT ... ON CONFLICT DO NOTHING
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _current_year() -> int:
    return datetime.now(timezone.utc).year


def _ensure_counter_row(prefix: str, year: int) -> None:
    """Create the (prefix, year) counter at 0 unless it already exists."""
    dialect = db.session.get_bind().dialect.name
    insert = _UPSERT_INSERTS.get(dialect)
    if insert is not None:
        stmt = (
            insert(ControlNumberCounter)
            .values(prefix=prefix, year=year, last_value=0)
            .on_conflict_do_nothing(index_elements=["prefix", "year"])
        )
        db.session.execute(stmt)
        return

    exists = db.session.execute(
        select(ControlNumberCounter.id).where(
            ControlNumberCounter.prefix == prefix,
            ControlNumberCounter.year == year,
        )
    ).first()
    if exists:
        return
    try:
        with db.session.begin_nested():
            db.session.add(ControlNumberCounter(prefix=prefix, year=year, last_value=0))
    except IntegrityError:
        # Another writer created it first; its row is what we increment.
        logger.debug("Counter %s-%s created concurrently", prefix, year)


def next_sequence(prefix: str, year: int) -> int:
    """Atomically advance and return the counter for (prefix, year)."""
    _ensure_counter_row(prefix, year)
    db.session.execute(
        update(ControlNumberCounter)
        .where(
            ControlNumberCounter.prefix == prefix,
            ControlNumberCounter.year == year,
        )
        .values(last_value=ControlNumberCounter.last_value + 1)
        .execution_options(synchronize_session=False)
    )
    value = db.session.execute(
        select(ControlNumberCounter.last_value).where(
            ControlNumberCounter.prefix == prefix,
            ControlNumberCounter.year == year,
        )
    ).scalar_one()
    return value


def format_control_number(prefix: str, year: int, seq: int) -> str:
    return f"{prefix}-{year}-{seq:04d}"


def generate_control_number(request_type: str, year: int | None = None) -> str:
    """Allocate the next control number for *request_type* in *year*.

    Defaults to the current UTC year.

    Raises:
        ValidationError: unknown request type.
    """
    prefix = CONTROL_NUMBER_PREFIXES.get(request_type)
    if prefix is None:
        raise ValidationError(
            f"request_type must be one of: {', '.join(CONTROL_NUMBER_PREFIXES)}",
            details={"request_type": request_type},
        )
    year = year or _current_year()
    number = format_control_number(prefix, year, next_sequence(prefix, year))
    logger.debug("Allocated control number %s", number)
    return number


def generate_dmoc_number(year: int | None = None) -> str:
    """Allocate the next DMOC-{YEAR}-{SEQ} number (shared with MOC type dmoc)."""
    year = year or _current_year()
    return format_control_number(DMOC_PREFIX, year, next_sequence(DMOC_PREFIX, year))
