"""
Admin authorization for price management endpoints.

Bearer tokens are configured through ADMIN_API_TOKENS as
``token=user_id:username:role`` pairs separated by commas. Token issuing
lives outside this service.
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse

from .. import config
from ..exceptions import Unauthorized


logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


@dataclass
class Principal:
    user_id: str
    username: str
    role: str


def parse_token_config(raw: str) -> Dict[str, Principal]:
    """Parse ``token=user_id:username:role`` entries, skipping malformed ones."""
    principals: Dict[str, Principal] = {}
    for item in (raw or "").split(","):
        item = item.strip()
        if not item or "=" not in item:
            continue
        token, identity = item.split("=", 1)
        parts = identity.split(":")
        if len(parts) != 3 or not token.strip():
            logger.warning("Ignoring malformed ADMIN_API_TOKENS entry")
            continue
        user_id, username, role = (p.strip() for p in parts)
        principals[token.strip()] = Principal(user_id=user_id, username=username, role=role)
    return principals


def resolve_principal(authorization: Optional[str],
                      principals: Optional[Dict[str, Principal]] = None) -> Principal:
    """
    Resolve an Authorization header to an admin principal.

    Raises:
        Unauthorized: 401 for a missing or unknown token, 403 for a non-admin.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized("Authorization header missing or invalid", 401)

    token = authorization[len("Bearer "):].strip()
    if principals is None:
        principals = parse_token_config(config.ADMIN_API_TOKENS)

    principal = None
    for known_token, candidate in principals.items():
        if hmac.compare_digest(known_token.encode(), token.encode()):
            principal = candidate
            break

    if principal is None:
        raise Unauthorized("Invalid or expired token", 401)
    if principal.role != ADMIN_ROLE:
        raise Unauthorized("Admin access required", 403)
    return principal


def validate_admin_role(
    request: Request,
) -> Tuple[bool, Optional[str], Optional[str], Optional[JSONResponse]]:
    """
    Check that the request carries an admin token.

    Returns:
        (authorized, user_id, username, error_response). error_response is
        a ready JSON response when authorized is False.
    """
    try:
        principal = resolve_principal(request.headers.get("Authorization"))
    except Unauthorized as e:
        logger.info("Admin check failed for %s %s: %s", request.method, request.url.path, e)
        return False, None, None, JSONResponse(
            status_code=e.status_code,
            content={"success": False, "error": str(e)},
        )
    return True, principal.user_id, principal.username, None
