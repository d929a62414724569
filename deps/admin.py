# deps/admin.py
import hmac

from fastapi import Depends, Header, HTTPException, status

from settings import settings


class AdminActor:
    def __init__(self, actor_id: str):
        self.actor_id = actor_id


def require_admin(
    x_admin_api_key: str | None = Header(default=None, alias="X-Admin-API-Key"),
    x_admin_actor: str | None = Header(default=None, alias="X-Admin-Actor"),
) -> AdminActor:
    if not x_admin_api_key or not hmac.compare_digest(x_admin_api_key, settings.ADMIN_API_KEY):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="ADMIN_REQUIRED",
        )
    return AdminActor(actor_id=(x_admin_actor or "admin").strip()[:64] or "admin")


def require_overrides_enabled(admin: AdminActor = Depends(require_admin)) -> AdminActor:
    if not (settings.DEMO_MODE or settings.ADMIN_OVERRIDES_ENABLED):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="OVERRIDES_DISABLED",
        )
    return admin
