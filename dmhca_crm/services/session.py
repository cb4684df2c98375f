"""
DMHCA CRM - Session

Two states:
    ANONYMOUS --login / restore--> AUTHENTICATED
    AUTHENTICATED --logout / 401 from backend--> ANONYMOUS

The session holds exactly one hydrated User. It is replaced as a whole on
login / refresh / logout and never edited in place.
"""

import logging
from enum import Enum
from typing import Optional, Iterable

from pydantic import ValidationError

from dmhca_crm.models.auth import User
from dmhca_crm.services import permissions
from dmhca_crm.services.api_client import (
    CRMApiClient,
    ApiClientError,
    AuthenticationExpired,
)

logger = logging.getLogger("session")


class SessionState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"


def load_user(payload: dict) -> User:
    """Validate a backend user payload and backfill its permissions."""
    return permissions.hydrate_user(User.model_validate(payload))


class CRMSession:

    def __init__(self, api_client: CRMApiClient):
        self.api_client = api_client
        self._user: Optional[User] = None

    # ==================== STATE ====================

    @property
    def user(self) -> Optional[User]:
        return self._user

    @property
    def state(self) -> SessionState:
        return SessionState.AUTHENTICATED if self._user else SessionState.ANONYMOUS

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED

    @property
    def token(self) -> Optional[str]:
        return self.api_client.token

    def _set_user(self, user: Optional[User]):
        self._user = user

    # ==================== TRANSITIONS ====================

    async def login(self, email: str, password: str) -> bool:
        """Credential exchange with the backend. False on any failure."""
        try:
            result = await self.api_client.login(email, password)
            user = load_user(result.get("user") or {})
        except ApiClientError as e:
            logger.warning(f"[LOGIN_FAILED] email={email} status={e.status} reason={e.message}")
            self._set_user(None)
            return False
        except ValidationError as e:
            logger.error(f"[LOGIN_FAILED] email={email} invalid user payload: {e.error_count()} errors")
            self.api_client.token = None
            self._set_user(None)
            return False

        self._set_user(user)
        logger.info(f"[LOGIN] user={user.email} role={user.role.value} branch={user.branch.value}")
        return True

    async def restore(self, token: str) -> bool:
        """Adopt an existing bearer token and load its user."""
        self.api_client.token = token
        await self.refresh_user()
        return self.is_authenticated

    async def refresh_user(self):
        """Reload the user from the backend; any failure ends the session."""
        try:
            payload = await self.api_client.get_current_user()
            user = load_user(payload or {})
        except AuthenticationExpired:
            self.handle_auth_expired()
            return
        except ApiClientError as e:
            logger.error(f"Failed to refresh user: {e.message}")
            self._set_user(None)
            return
        except ValidationError as e:
            logger.error(f"Failed to refresh user: invalid payload ({e.error_count()} errors)")
            self._set_user(None)
            return

        self._set_user(user)

    async def logout(self):
        try:
            await self.api_client.logout()
        except ApiClientError as e:
            logger.warning(f"Logout error: {e.message}")
        finally:
            self._set_user(None)

    def handle_auth_expired(self):
        """Reverse transition on a 401 from the backend."""
        if self._user:
            logger.info(f"[SESSION_EXPIRED] user={self._user.email}")
        self.api_client.token = None
        self.api_client.refresh_token = None
        self._set_user(None)

    # ==================== BOUND CHECKS ====================

    def has_permission(self, resource: str, action: str, scope: Optional[str] = None) -> bool:
        return permissions.has_permission(self._user, resource, action, scope)

    def can_access_resource(self, resource: str) -> bool:
        return permissions.can_access_resource(self._user, resource)

    def is_manager(self) -> bool:
        return permissions.is_manager(self._user)

    def is_team_lead(self) -> bool:
        return permissions.is_team_lead(self._user)

    def is_counselor(self) -> bool:
        return permissions.is_counselor(self._user)

    def get_accessible_leads(self, leads: Iterable) -> list:
        return permissions.get_accessible_leads(self._user, leads)
