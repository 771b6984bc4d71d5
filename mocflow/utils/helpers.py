"""Shared utility functions.

parse_date:        returns None on bad input (query-string filters)
parse_date_input:  raises ValueError on bad input (request bodies)
parse_bool:        tolerant "true"/"1"/"yes" parsing for query params
commit_or_raise:   commit the session, translating lost updates into ConcurrencyError
clamp_page, paginate: page/page_size list envelope
"""
import logging
from datetime import date, datetime

from sqlalchemy.orm.exc import StaleDataError

from mocflow.core.exceptions import ConcurrencyError
from mocflow.models import db

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY (European format)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Same as parse_date() but raises ValueError instead of returning None,
    so blueprints can answer 400 for a malformed body field.
    """
    if value is None or value == "":
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValueError("Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY.")
    return parsed


def parse_bool(value):
    """Return True/False for common truthy/falsy strings, None when absent."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


# ── Database commit helper ───────────────────────────────────────────────────

def commit_or_raise(resource: str, resource_id=None):
    """Commit the current SQLAlchemy session.

    A stale version token (another writer committed first) is rolled back
    and re-raised as ConcurrencyError.  Any other failure is rolled back and
    propagated unchanged so nothing partial stays visible.
    """
    try:
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Stale %s id=%s on commit: %s", resource, resource_id, exc)
        raise ConcurrencyError(resource, resource_id) from exc
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected database error committing %s id=%s", resource, resource_id)
        raise


# ── Pagination ───────────────────────────────────────────────────────────────

def clamp_page(page, page_size, *, default_size=20, max_size=100):
    """Coerce page/page_size to ints: page >= 1, 1 <= page_size <= max_size."""
    try:
        page = int(page)
    except (TypeError, ValueError):
        page = 1
    try:
        page_size = int(page_size)
    except (TypeError, ValueError):
        page_size = default_size
    return max(page, 1), min(max(page_size, 1), max_size)


def paginate(query, page, page_size):
    """Run *query* for one page and wrap it in the list envelope.

    Returns:
        {"items": [model, ...], "total", "page", "page_size", "total_pages"}
        Callers map ``items`` to dicts.
    """
    total = query.order_by(None).count()
    items = query.limit(page_size).offset((page - 1) * page_size).all()
    return {
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": (total + page_size - 1) // page_size if page_size else 0,
    }
