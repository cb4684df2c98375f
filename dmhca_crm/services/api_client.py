"""
DMHCA CRM - Backend API client

Async client for the DMHCA REST backend (auth, leads, users, courses).
- Bearer token auth
- Timeout on every call
- Retry with exponential backoff on network errors / 5xx, never on 4xx
- 401 on an authenticated call raises AuthenticationExpired
"""

import asyncio
import logging
from typing import Optional, List, Dict, Any

import httpx

from dmhca_crm.config import (
    CRM_API_URL,
    CRM_API_TIMEOUT,
    CRM_RETRY_ATTEMPTS,
    CRM_RETRY_DELAY,
)

logger = logging.getLogger("api_client")


class ApiClientError(Exception):
    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.details = details

    def is_client_error(self) -> bool:
        return self.status is not None and 400 <= self.status < 500


class AuthenticationExpired(ApiClientError):
    """The backend rejected the bearer token (HTTP 401)."""


def _error_from_response(resp: httpx.Response) -> ApiClientError:
    message = f"HTTP {resp.status_code}"
    details = None
    try:
        details = resp.json()
        if isinstance(details, dict):
            message = details.get("message") or details.get("error") or message
    except ValueError:
        message = resp.reason_phrase or message
    return ApiClientError(message, resp.status_code, str(resp.status_code), details)


class CRMApiClient:
    """
    One instance per session: it carries that session's tokens.
    `transport` lets callers plug an httpx transport (tests use MockTransport).
    """

    def __init__(
        self,
        base_url: str = CRM_API_URL,
        token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        timeout: float = CRM_API_TIMEOUT,
        retry_attempts: int = CRM_RETRY_ATTEMPTS,
        retry_delay: float = CRM_RETRY_DELAY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.refresh_token = refresh_token
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.transport = transport

    # ==================== LOW LEVEL ====================

    def _headers(self, auth: bool) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if auth:
            if not self.token:
                raise ApiClientError("Authentication required. Please login first.", 401)
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _send(
        self,
        method: str,
        path: str,
        params=None,
        json: Any = None,
        auth: bool = True,
    ) -> httpx.Response:
        headers = self._headers(auth)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                return await client.request(
                    method,
                    f"{self.base_url}{path}",
                    params=params,
                    json=json,
                    headers=headers,
                )
        except httpx.TimeoutException:
            raise ApiClientError("Request timeout")
        except httpx.HTTPError as e:
            raise ApiClientError(f"Unable to connect to server: {e}")

    def _parse(self, resp: httpx.Response, auth: bool, unwrap: bool):
        if resp.status_code == 401 and auth:
            raise AuthenticationExpired("Authentication expired. Please login again.", 401, "401")
        if resp.is_error:
            raise _error_from_response(resp)
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            data = resp.json()
        except ValueError:
            raise ApiClientError("Invalid response format", resp.status_code)
        if unwrap and isinstance(data, dict) and "data" in data:
            return data["data"]
        return data

    async def _request(
        self,
        method: str,
        path: str,
        params=None,
        json: Any = None,
        unwrap: bool = True,
    ):
        """Authenticated call with retry + backoff."""
        attempts = max(self.retry_attempts, 1)
        delay = self.retry_delay

        while True:
            try:
                resp = await self._send(method, path, params=params, json=json)
                return self._parse(resp, auth=True, unwrap=unwrap)
            except ApiClientError as e:
                attempts -= 1
                if attempts <= 0 or e.is_client_error():
                    if not e.is_client_error():
                        logger.error(f"[API_ERROR] {method} {path}: {e.message}")
                    raise
                logger.warning(
                    f"[RETRY] {method} {path} failed ({e.message}), "
                    f"retrying in {delay}s ({attempts} left)"
                )
                await asyncio.sleep(delay)
                delay *= 2

    # ==================== AUTH ====================

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        """Credential exchange. Stores the tokens on success."""
        resp = await self._send(
            "POST", "/auth/login",
            json={"email": email, "password": password},
            auth=False,
        )
        if resp.is_error:
            error = _error_from_response(resp)
            if error.message == f"HTTP {resp.status_code}":
                error.message = "Invalid credentials"
            raise error

        result = self._parse(resp, auth=False, unwrap=False)
        if not isinstance(result, dict):
            raise ApiClientError("Invalid response format", resp.status_code)
        self.token = result.get("token")
        self.refresh_token = result.get("refreshToken")
        return result

    async def logout(self) -> None:
        try:
            await self._request("POST", "/auth/logout")
        finally:
            # Tokens are dropped even if the backend call fails
            self.token = None
            self.refresh_token = None

    async def get_current_user(self) -> Dict[str, Any]:
        return await self._request("GET", "/auth/me")

    async def refresh(self, refresh_token: Optional[str] = None) -> Dict[str, Any]:
        refresh_token = refresh_token or self.refresh_token
        if not refresh_token:
            raise ApiClientError("No refresh token available", 401)

        resp = await self._send(
            "POST", "/auth/refresh",
            json={"refreshToken": refresh_token},
            auth=False,
        )
        if resp.is_error:
            raise ApiClientError("Token refresh failed", 401)

        result = self._parse(resp, auth=False, unwrap=False)
        if not isinstance(result, dict):
            raise ApiClientError("Invalid response format", resp.status_code)
        self.token = result.get("token")
        self.refresh_token = result.get("refreshToken")
        return result

    # ==================== LEADS ====================

    async def get_leads(
        self,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        search: Optional[str] = None,
        status: Optional[List[str]] = None,
        source: Optional[List[str]] = None,
        qualification: Optional[List[str]] = None,
        branch: Optional[List[str]] = None,
        assigned_to: Optional[List[str]] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Returns {"data": [...], "pagination": {...}}"""
        params = []
        if page:
            params.append(("page", str(page)))
        if limit:
            params.append(("limit", str(limit)))
        if search:
            params.append(("search", search))
        for key, values in (
            ("status", status),
            ("source", source),
            ("qualification", qualification),
            ("branch", branch),
            ("assignedTo", assigned_to),
        ):
            for value in values or []:
                params.append((key, value))
        if date_from:
            params.append(("dateFrom", date_from))
        if date_to:
            params.append(("dateTo", date_to))

        result = await self._request("GET", "/leads", params=params, unwrap=False)
        if isinstance(result, list):
            return {"data": result, "pagination": None}
        return {"data": result.get("data") or [], "pagination": result.get("pagination")}

    async def get_todays_follow_ups(self) -> List[Dict[str, Any]]:
        result = await self._request("GET", "/analytics/followups/today")
        return result if isinstance(result, list) else []

    async def get_lead(self, lead_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/leads/{lead_id}")

    async def create_lead(self, lead_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/leads", json=lead_data)

    async def update_lead(self, lead_id: str, lead_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"/leads/{lead_id}", json=lead_data)

    async def delete_lead(self, lead_id: str) -> None:
        await self._request("DELETE", f"/leads/{lead_id}")

    async def add_lead_note(self, lead_id: str, note: str) -> None:
        await self._request("POST", f"/leads/{lead_id}/notes", json={"note": note})

    async def assign_lead(self, lead_id: str, assigned_to: str, reason: Optional[str] = None) -> None:
        await self._request(
            "PATCH", f"/leads/{lead_id}/assign",
            json={"assignedTo": assigned_to, "reason": reason},
        )

    async def update_lead_status(self, lead_id: str, status: str, note: Optional[str] = None) -> Dict[str, Any]:
        return await self._request(
            "PATCH", f"/leads/{lead_id}/status",
            json={"status": status, "note": note},
        )

    # ==================== USERS ====================

    async def get_users(
        self,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        search: Optional[str] = None,
        role: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {}
        if page:
            params["page"] = str(page)
        if limit:
            params["limit"] = str(limit)
        if search:
            params["search"] = search
        if role:
            params["role"] = role
        if branch:
            params["branch"] = branch

        result = await self._request("GET", "/users", params=params, unwrap=False)
        if isinstance(result, list):
            return {"data": result, "pagination": None}
        return {"data": result.get("data") or [], "pagination": result.get("pagination")}

    async def create_user(self, user_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/users", json=user_data)

    async def update_user(self, user_id: str, user_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"/users/{user_id}", json=user_data)

    async def delete_user(self, user_id: str) -> None:
        await self._request("DELETE", f"/users/{user_id}")

    # ==================== REFERENCE DATA ====================

    async def get_courses(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/courses")

    async def health_check(self) -> Dict[str, Any]:
        try:
            resp = await self._send("GET", "/health", auth=False)
        except ApiClientError:
            raise ApiClientError("Backend server is not available", 503)
        if resp.is_error:
            raise ApiClientError("Backend server is not available", 503)
        try:
            return resp.json()
        except ValueError:
            raise ApiClientError("Backend server is not available", 503)
