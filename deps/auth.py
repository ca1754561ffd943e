# deps/auth.py
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from security import decode_token
from trm.roles import Actor, parse_role

bearer = HTTPBearer(auto_error=False)


def _unauthorized() -> HTTPException:
    return HTTPException(status_code=401, detail="UNAUTHORIZED")


def actor_from_claims(claims: Dict[str, Any]) -> Optional[Actor]:
    """Build the acting user from verified JWT claims; None when a claim is missing or malformed."""
    sub = claims.get("sub")
    if not sub:
        return None
    company_id = claims.get("company_id")
    try:
        return Actor(
            user_id=UUID(str(sub)),
            role=parse_role(claims.get("role")),
            company_id=UUID(str(company_id)) if company_id else None,
        )
    except ValueError:
        return None


def get_current_actor(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> Actor:
    if creds is None or (creds.scheme or "").lower() != "bearer":
        raise _unauthorized()

    actor = actor_from_claims(decode_token(creds.credentials))
    if actor is None:
        raise _unauthorized()
    return actor
