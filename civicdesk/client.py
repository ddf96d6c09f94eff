# Async client for the Civic Issue Desk API
#
# Staff authentication lives in one AdminSession object that the caller
# passes in. A 401 from any staff endpoint clears it.

import json
import logging
from typing import Any, Dict, Iterable, Optional, Tuple
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: int, detail: Any):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class SessionExpired(ApiError):
    """The server rejected the session token; the session has been invalidated."""


class AdminSession:
    def __init__(self, token: Optional[str] = None, admin: Optional[dict] = None):
        self.token = token
        self.admin = admin

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def start(self, token: str, admin: dict) -> None:
        self.token = token
        self.admin = admin

    def invalidate(self) -> None:
        self.token = None
        self.admin = None

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}


class CivicClient:
    def __init__(self, base_url: str, session: Optional[AdminSession] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 30.0):
        self.session = session if session is not None else AdminSession()
        self._http = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, staff: bool = False, **kwargs) -> Any:
        if staff:
            kwargs["headers"] = {**kwargs.get("headers", {}), **self.session.headers()}
        resp = await self._http.request(method, path, **kwargs)
        if resp.status_code == 401 and staff:
            self.session.invalidate()
            logger.info("Session invalidated after 401 on %s %s", method, path)
            raise SessionExpired(resp.status_code, _detail(resp))
        if resp.status_code >= 400:
            raise ApiError(resp.status_code, _detail(resp))
        return resp.json()

    # -- public ------------------------------------------------------------
    async def report_issue(self, title: str, description: str, category: str,
                           location: Dict[str, Any], reporter_info: Dict[str, Any],
                           priority: Optional[str] = None,
                           images: Iterable[Tuple[str, bytes, str]] = ()) -> dict:
        """Submit an issue. ``images`` holds (filename, content, content_type) tuples."""
        data = {"title": title, "description": description, "category": category,
                "location": json.dumps(location), "reporterInfo": json.dumps(reporter_info)}
        if priority:
            data["priority"] = priority
        files = [("images", image) for image in images]
        return await self._request("POST", "/issues", data=data, files=files or None)

    async def list_issues(self, **params) -> dict:
        return await self._request("GET", "/issues", params=_clean(params))

    async def get_issue(self, issue_id: str) -> dict:
        return await self._request("GET", f"/issues/{issue_id}")

    async def search_issues(self, query: str, limit: int = 20) -> list:
        return await self._request("GET", f"/issues/search/{quote(query, safe='')}",
                                   params={"limit": limit})

    # -- auth --------------------------------------------------------------
    async def login(self, email: str, password: str) -> AdminSession:
        data = await self._request("POST", "/auth/login", json={"email": email, "password": password})
        self.session.start(data["token"], data["admin"])
        return self.session

    def logout(self) -> None:
        self.session.invalidate()

    async def me(self) -> dict:
        return await self._request("GET", "/auth/me", staff=True)

    # -- staff -------------------------------------------------------------
    async def admin_issues(self, **params) -> dict:
        return await self._request("GET", "/admin/issues", staff=True, params=_clean(params))

    async def admin_issue(self, issue_id: str) -> dict:
        return await self._request("GET", f"/admin/issues/{issue_id}", staff=True)

    async def update_issue(self, issue_id: str, **fields) -> dict:
        return await self._request("PUT", f"/admin/issues/{issue_id}", staff=True, json=fields)

    async def delete_issue(self, issue_id: str) -> dict:
        return await self._request("DELETE", f"/admin/issues/{issue_id}", staff=True)

    async def dashboard(self, period: int = 30) -> dict:
        return await self._request("GET", "/admin/dashboard", staff=True, params={"period": period})


def _clean(params: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in params.items() if v is not None and v != ""}


def _detail(resp: httpx.Response) -> Any:
    try:
        data = resp.json()
    except ValueError:
        return resp.text
    if isinstance(data, dict) and "errors" in data:
        return data["errors"]
    return data.get("detail", data) if isinstance(data, dict) else data
