from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from .config import Settings
from .students import (
    StudentQuery, page_range, parse_content_range, quote_value,
)

logger = logging.getLogger(__name__)


class BackendNotConfigured(RuntimeError):
    pass


class BackendError(RuntimeError):
    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


def _error_message(r: httpx.Response) -> str:
    try:
        body = r.json()
    except ValueError:
        return r.text or f"HTTP {r.status_code}"
    if isinstance(body, dict):
        for key in ("error_description", "msg", "message", "error"):
            if body.get(key):
                return str(body[key])
    return r.text or f"HTTP {r.status_code}"


def _raise_for(r: httpx.Response, what: str) -> None:
    if r.is_error:
        msg = _error_message(r)
        logger.warning("%s failed: HTTP %s %s", what, r.status_code, msg)
        raise BackendError(r.status_code, msg)


class SupabaseClient:
    """Talks to the hosted backend over plain REST: GoTrue for auth and
    PostgREST for rows. The anon key is used unless a service-role key is
    given and the caller asks for privileged reads."""

    def __init__(self, http: httpx.AsyncClient, url: str, anon_key: str,
                 service_role_key: Optional[str] = None,
                 table: str = "students"):
        self.http = http
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.service_role_key = service_role_key
        self.table = table

    @classmethod
    def from_settings(cls, http: httpx.AsyncClient,
                      settings: Settings) -> "SupabaseClient":
        problem = settings.backend_problem()
        if problem:
            raise BackendNotConfigured(problem)
        return cls(
            http,
            settings.supabase_url,
            settings.supabase_anon_key,
            service_role_key=settings.supabase_service_role_key,
            table=settings.students_table,
        )

    # ---- plumbing
    def _headers(self, token: Optional[str] = None,
                 privileged: bool = False) -> Dict[str, str]:
        key = self.anon_key
        if privileged and self.service_role_key:
            key = self.service_role_key
        return {
            "apikey": key,
            "Authorization": f"Bearer {token or key}",
        }

    def _rest(self) -> str:
        return f"{self.url}/rest/v1/{self.table}"

    def _auth(self, path: str) -> str:
        return f"{self.url}/auth/v1/{path}"

    # ---- rows
    async def query_students(
            self, query: StudentQuery, page: int, page_size: int
    ) -> Tuple[List[Dict[str, Any]], int]:
        start, end = page_range(page, page_size)
        headers = self._headers()
        headers.update({
            "Range-Unit": "items",
            "Range": f"{start}-{end}",
            "Prefer": "count=exact",
        })
        r = await self.http.get(
            self._rest(), params=query.to_params(), headers=headers
        )
        if r.status_code == 416:
            # page past the end; PostgREST still reports the total
            return [], parse_content_range(r.headers.get("content-range"), 0)
        _raise_for(r, "student query")
        rows = r.json()
        total = parse_content_range(r.headers.get("content-range"), len(rows))
        return rows, total

    async def get_student(self, student_id: str) -> Optional[Dict[str, Any]]:
        r = await self.http.get(
            self._rest(),
            params=[
                ("select", "*"),
                ("student_id", f"eq.{student_id}"),
                ("limit", "1"),
            ],
            headers=self._headers(privileged=True),
        )
        _raise_for(r, "student lookup")
        rows = r.json()
        return rows[0] if rows else None

    async def get_students(
            self, ids: Iterable[str]
    ) -> List[Dict[str, Any]]:
        ids = [str(i) for i in ids]
        if not ids:
            return []
        in_list = ",".join(quote_value(i) for i in ids)
        r = await self.http.get(
            self._rest(),
            params=[
                ("select", "*"),
                ("student_id", f"in.({in_list})"),
                ("order", "student_id.asc"),
            ],
            headers=self._headers(privileged=True),
        )
        _raise_for(r, "student lookup")
        return r.json()

    # ---- auth
    async def sign_in_with_password(self, email: str,
                                    password: str) -> Dict[str, Any]:
        r = await self.http.post(
            self._auth("token"),
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            headers=self._headers(),
        )
        _raise_for(r, "sign in")
        return r.json()

    async def sign_up(self, email: str, password: str) -> Dict[str, Any]:
        """Returns a session when the project auto-confirms sign-ups,
        otherwise just the (unconfirmed) user."""
        r = await self.http.post(
            self._auth("signup"),
            json={"email": email, "password": password},
            headers=self._headers(),
        )
        _raise_for(r, "sign up")
        return r.json()

    async def get_user(self, access_token: str) -> Dict[str, Any]:
        r = await self.http.get(
            self._auth("user"), headers=self._headers(token=access_token)
        )
        _raise_for(r, "get user")
        return r.json()

    async def sign_out(self, access_token: str) -> None:
        r = await self.http.post(
            self._auth("logout"), headers=self._headers(token=access_token)
        )
        # an expired token is as good as signed out
        if r.status_code not in (401, 403, 404):
            _raise_for(r, "sign out")

    def authorize_url(self, provider: str, redirect_to: str) -> str:
        qs = urlencode({"provider": provider, "redirect_to": redirect_to})
        return f"{self._auth('authorize')}?{qs}"
