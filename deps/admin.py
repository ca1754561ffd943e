# deps/admin.py
from fastapi import Depends, HTTPException, status

from deps.auth import get_current_actor
from trm.roles import Actor

def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="ADMIN_REQUIRED",
        )
    return actor
