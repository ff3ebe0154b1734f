from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import quote, unquote
from uuid import UUID

import httpx
from fastapi import Depends, Header, HTTPException, status
from loguru import logger

from rentals import settings
from rentals.roles import ROLE_DESCRIPTIONS, STAFF_ROLES, ActorRole

_ROLE_HEADER_HELP = "Caller role set by the gateway. " + " ".join(
    f"{role}: {text}" for role, text in ROLE_DESCRIPTIONS.items()
)


@dataclass
class CurrentUser:
    id: UUID
    username: str
    role: ActorRole = ActorRole.GUEST

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

    @property
    def is_owner(self) -> bool:
        return self.role == ActorRole.OWNER


def get_current_user(
    x_user_id: str = Header(...),
    x_username: str = Header(...),
    x_user_role: str = Header(
        default=ActorRole.GUEST.value, description=_ROLE_HEADER_HELP
    ),
) -> CurrentUser:
    """
    Reads the identity headers injected by the gateway after it has
    authenticated the caller. Nothing here verifies credentials.
    """
    try:
        user_id = UUID(x_user_id)
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity from gateway",
        ) from None

    try:
        role = ActorRole(x_user_role.strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown role from gateway: {x_user_role!r}",
        ) from None

    return CurrentUser(id=user_id, username=unquote(x_username), role=role)


def require_roles(*allowed: ActorRole):
    """
    Factory that returns a dependency admitting only the given roles.

    Usage:
        @router.post("/protected")
        async def route(user = Depends(require_roles(ActorRole.ADMIN))):
            ...
    """

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of roles: {', '.join(sorted(allowed))}",
            )
        return current_user

    return _dep


# ---------------------------------------------------------------------------
# Pre-built role dependencies
# ---------------------------------------------------------------------------

can_manage_calendar = require_roles(*STAFF_ROLES)
can_view_stats = require_roles(*STAFF_ROLES)


# ---------------------------------------------------------------------------
# NotificationsClient: thin async wrapper around notifications-ms
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _get_notifications_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.notifications_ms_url,
        timeout=httpx.Timeout(5.0),
        follow_redirects=True,
    )


class NotificationsClient:
    """
    Posts already-rendered booking messages to notifications-ms, which owns
    delivery (email, SMS, messenger). Failures are swallowed: a lost
    notification must never undo a booking or a status change.
    """

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_notifications_http_client()

    def _headers(self, user: CurrentUser) -> dict[str, str]:
        return {
            "X-User-Id": str(user.id),
            "X-Username": quote(user.username),
            "X-User-Role": user.role.value,
        }

    async def notify(
        self,
        recipient_id: UUID,
        event: str,
        text: str,
        caller: CurrentUser,
    ) -> bool:
        """Returns True on success, False on any error (silently degraded)."""
        try:
            resp = await self._client.post(
                "/notifications",
                json={
                    "recipient_id": str(recipient_id),
                    "event": event,
                    "text": text,
                },
                headers=self._headers(caller),
            )
        except httpx.HTTPError:
            logger.warning("Notification {} to {} failed", event, recipient_id)
            return False
        if resp.status_code >= 400:
            logger.warning(
                "notifications-ms returned {} for {}", resp.status_code, event
            )
            return False
        return True


_notifications_client = NotificationsClient()


def get_notifications_client() -> NotificationsClient:
    return _notifications_client
