"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.  The Limiter instance
is created in mocflow/__init__.py with no default limits; this module applies
limits per route category.

Usage:
    from mocflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WORKFLOW_LIMIT = "60/minute"
ADMIN_LIMIT = "30/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Workflow endpoints (MOC, DMOC):  60/minute
        - Approval-level admin endpoints:  30/minute
        - Health check:                    exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("moc", "dmoc"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WORKFLOW_LIMIT)(bp)

    bp = app.blueprints.get("approval_levels")
    if bp:
        limiter.limit(ADMIN_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    logger.info("Rate limiter configured: workflow=%s admin=%s", WORKFLOW_LIMIT, ADMIN_LIMIT)
