from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from buildingops.tickets.models import Actor, ActorRole

Role = ActorRole


class User:
    """Authenticated caller carrying a single workflow role."""

    def __init__(self, user_id: str, role: Role):
        self.user_id = user_id
        self.role = role

    def has_role(self, role: Role) -> bool:
        return self.role == role

    def to_actor(self) -> Actor:
        return Actor(id=self.user_id, role=self.role)


TOKEN_USER_MAP: dict[str, tuple[str, Role]] = {
    "manager-token": ("manager-1", Role.MANAGER),
    "resident-token": ("resident-1", Role.RESIDENT),
    "supplier-token": ("supplier-1", Role.SUPPLIER),
}

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_user_from_token(token: str | None) -> User:
    """Return the user associated with the provided bearer token."""

    if token is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    if token not in TOKEN_USER_MAP:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    user_id, role = TOKEN_USER_MAP[token]
    return User(user_id=user_id, role=role)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> User:
    """Very small authentication stub.

    Static tokens map to demo users. Identity issuance lives outside this service; a
    real deployment would verify the token with the identity provider instead.
    """

    cached = getattr(request.state, "user", None)
    if isinstance(cached, User):
        return cached

    token = credentials.credentials if credentials is not None else None
    user = resolve_user_from_token(token)
    request.state.user = user
    return user


def role_required(*roles: Role) -> Callable[[User], User]:
    """Dependency factory ensuring the current user holds one of ``roles``."""

    async def dependency(user: Annotated[User, Depends(get_current_user)]) -> User:
        if not any(user.has_role(role) for role in roles):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


CurrentUser = Annotated[User, Depends(get_current_user)]
