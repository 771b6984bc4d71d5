"""Shared blueprint helpers: paging params and JSON body access."""

from flask import current_app, request

from mocflow.utils.helpers import clamp_page


def page_params():
    """Read ``page`` / ``page_size`` from the query string.

    Returns:
        (page, page_size) clamped to page >= 1 and
        1 <= page_size <= MAX_PAGE_SIZE.
    """
    return clamp_page(
        request.args.get("page", 1),
        request.args.get("page_size", current_app.config.get("DEFAULT_PAGE_SIZE", 20)),
        default_size=current_app.config.get("DEFAULT_PAGE_SIZE", 20),
        max_size=current_app.config.get("MAX_PAGE_SIZE", 100),
    )


def json_body():
    """Request JSON as a dict, or None when the body is missing or not an object."""
    data = request.get_json(silent=True)
    if data is None and not request.get_data():
        return {}
    return data if isinstance(data, dict) else None
