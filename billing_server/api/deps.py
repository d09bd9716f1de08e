from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from billing_server.models.enums import UserRole
from billing_server.services.actor import Actor


async def get_db(request: Request):
    async with request.app.state.sessionmaker() as db:
        yield db


async def current_actor(
    x_user_id: Optional[int] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    """Identity forwarded by the authentication layer in front of this service."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="User not authenticated")
    role = x_user_role or UserRole.USER.value
    if role not in {r.value for r in UserRole}:
        raise HTTPException(status_code=401, detail="Unknown role")
    return Actor(user_id=x_user_id, role=role)


async def admin_actor(actor: Actor = Depends(current_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Unauthorized. Admin access required.")
    return actor
