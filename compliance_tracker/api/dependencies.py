"""
FastAPI dependencies for the collaborators in front of the engine.

Identity comes from headers set by the upstream auth proxy:
X-Actor-Id and X-Actor-Role. Roles rank viewer < engineer < manager < admin.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from compliance_tracker.config import Settings, get_settings
from compliance_tracker.models.enums import Role

logger = logging.getLogger(__name__)

_ROLE_RANK = {
    Role.VIEWER: 1,
    Role.ENGINEER: 2,
    Role.MANAGER: 3,
    Role.ADMIN: 4,
}


@dataclass
class Actor:
    id: str
    role: Role

    def has_role(self, minimum: Role) -> bool:
        return _ROLE_RANK[self.role] >= _ROLE_RANK[minimum]


def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: str = Header(Role.VIEWER.value),
) -> Actor:
    if not x_actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    try:
        role = Role(x_actor_role.lower())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unknown role") from None
    return Actor(id=x_actor_id, role=role)


def require_role(minimum: Role) -> Callable[..., Actor]:
    """Dependency factory: the current actor, if they hold at least `minimum`."""
    def dependency(actor: Actor = Depends(get_actor)) -> Actor:
        if not actor.has_role(minimum):
            logger.warning("Actor %s (%s) denied; requires %s", actor.id, actor.role.value, minimum.value)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return actor
    return dependency


# Manage actions (create/update/complete/delete) need engineer or above
require_manager_access = require_role(Role.ENGINEER)


def throttle(tier: str) -> Callable[..., None]:
    """
    Dependency factory enforcing the per-actor quota for a tier.

    tier is "general" for mutating routes and "relaxed" for reads.
    """
    def dependency(
        request: Request,
        actor: Actor = Depends(get_actor),
        settings: Settings = Depends(get_settings),
    ) -> None:
        limit = settings.rate_limit_general if tier == "general" else settings.rate_limit_relaxed
        limiter = request.app.state.rate_limiter
        result = limiter.check_and_consume(
            f"user:{actor.id}:{tier}", limit, settings.rate_limit_window_seconds
        )
        if not result.allowed:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Rate limit exceeded",
                headers=result.headers(),
            )
    return dependency
