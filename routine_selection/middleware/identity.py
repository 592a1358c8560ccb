"""
Identity Context Middleware — resolves the acting user and organization.

Authentication itself happens upstream (API gateway / auth service). Every
API request reaching this service carries the already-verified identity in
two headers:

    X-User-Id           the acting user
    X-Organization-Id   the tenant all reads and writes are scoped to

The values land on ``g.user_id`` / ``g.organization_id``. Requests
without them are rejected with 401 before any route handler runs.
"""

import logging

from flask import g, request

from routine_selection.utils.errors import E, api_error

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"
ORGANIZATION_HEADER = "X-Organization-Id"

# Paths that need no identity
IDENTITY_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_identity_context(app):
    """Register identity context middleware as a before_request hook."""

    @app.before_request
    def _identity_context():
        g.user_id = None
        g.organization_id = None

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in IDENTITY_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None
        if request.method == "OPTIONS":
            return None

        user_id = (request.headers.get(USER_HEADER) or "").strip()
        organization_id = (request.headers.get(ORGANIZATION_HEADER) or "").strip()
        if not user_id or not organization_id:
            logger.info(
                "Rejected unauthenticated request",
                extra={"method": request.method, "path": request.path,
                       "request_id": getattr(g, "request_id", None)},
            )
            return api_error(
                E.UNAUTHENTICATED,
                f"{USER_HEADER} and {ORGANIZATION_HEADER} headers are required",
            )

        g.user_id = user_id
        g.organization_id = organization_id
        return None
