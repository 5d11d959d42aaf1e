"""Supabase integration: identity admin API, session tokens and PostgREST rows.

Both clients talk plain HTTP via urllib with the service-role key.  Session
tokens are HS256 JWTs verified locally with the project's JWT secret.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from mediadesk.content.models import IdentityAccount, OperatorRole
from mediadesk.errors import (
    EntityNotFoundError,
    IdentityProviderError,
    MediadeskError,
    PermissionDeniedError,
    RecordStoreError,
    TransientIOError,
)
from mediadesk.integrations.base import IdentityProvider, RecordStore

logger = logging.getLogger(__name__)

SESSION_AUDIENCE = "authenticated"


class SupabaseConfig(BaseModel):
    """Configuration for the Supabase project."""

    url: str = ""
    service_role_key: str = ""
    jwt_secret: str = ""
    site_url: str = ""
    request_timeout: float = 20.0

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.service_role_key)

    @property
    def invite_redirect(self) -> str | None:
        if not self.site_url:
            return None
        return f"{self.site_url.rstrip('/')}/auth/invite"


class _NotFound(Exception):
    """Internal marker for HTTP 404 responses."""


class SupabaseHTTPClient:
    """Authenticated JSON requests against a Supabase project."""

    def __init__(
        self,
        config: SupabaseConfig,
        error_cls: type[MediadeskError] = IdentityProviderError,
    ) -> None:
        self.config = config
        self.base_url = config.url.rstrip("/")
        self._error_cls = error_cls

    def request(
        self,
        method: str,
        path: str,
        data: Any = None,
        *,
        query: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        missing_ok: bool = False,
    ) -> Any:
        """Make an authenticated request and decode the JSON body.

        A 404 means "absent" only to callers passing ``missing_ok``; anywhere
        else it is a permanent error of this client's kind (e.g. a missing
        table).

        Raises:
            _NotFound: On HTTP 404 when *missing_ok* is set.
            TransientIOError: On network failures, throttling or 5xx.
        """
        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{urllib.parse.urlencode(query, safe='.,*')}"
        body = json.dumps(data).encode("utf-8") if data is not None else None
        req = urllib.request.Request(
            url,
            data=body,
            method=method,
            headers={
                "apikey": self.config.service_role_key,
                "Authorization": f"Bearer {self.config.service_role_key}",
                "Content-Type": "application/json",
                **(headers or {}),
            },
        )
        try:
            with urllib.request.urlopen(req, timeout=self.config.request_timeout) as resp:
                raw = resp.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            if exc.code == 404 and missing_ok:
                raise _NotFound(path) from exc
            detail = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
            if exc.code == 429 or exc.code >= 500:
                raise TransientIOError(f"{method} {path} failed with {exc.code}: {detail}") from exc
            raise self._error_cls(f"{method} {path} rejected with {exc.code}: {detail}") from exc
        except (urllib.error.URLError, TimeoutError, ConnectionError) as exc:
            raise TransientIOError(f"{method} {path} failed: {exc}") from exc
        return json.loads(raw) if raw else None


def _account_from_user(user: dict[str, Any]) -> IdentityAccount:
    metadata = user.get("user_metadata") or {}
    role = metadata.get("role")
    return IdentityAccount(
        id=user["id"],
        email=user.get("email") or "",
        role=OperatorRole(role) if role in {r.value for r in OperatorRole} else None,
        confirmed_at=user.get("confirmed_at") or None,
        created_at=user.get("created_at") or None,
    )


class SupabaseIdentityProvider(IdentityProvider):
    """Operator accounts via the Supabase auth admin API."""

    def __init__(self, config: SupabaseConfig, http: SupabaseHTTPClient | None = None) -> None:
        self.config = config
        self.http = http or SupabaseHTTPClient(config, IdentityProviderError)

    def invite_account(
        self,
        email: str,
        role: OperatorRole,
        redirect_to: str | None = None,
    ) -> IdentityAccount:
        """Send an invitation email and return the created account."""
        redirect = redirect_to or self.config.invite_redirect
        query = {"redirect_to": redirect} if redirect else None
        user = self.http.request(
            "POST",
            "/auth/v1/invite",
            {"email": email, "data": {"role": role.value}},
            query=query,
        )
        account = _account_from_user(user)
        logger.info("Invited %s as %s (account %s)", email, role.value, account.id)
        return account

    def get_account(self, account_id: str) -> IdentityAccount | None:
        try:
            user = self.http.request(
                "GET", f"/auth/v1/admin/users/{account_id}", missing_ok=True
            )
        except _NotFound:
            return None
        return _account_from_user(user)

    def find_account_by_email(self, email: str) -> IdentityAccount | None:
        wanted = email.strip().lower()
        page = 1
        while True:
            result = self.http.request(
                "GET",
                "/auth/v1/admin/users",
                query={"page": str(page), "per_page": "200"},
            )
            users = (result or {}).get("users", [])
            for user in users:
                if (user.get("email") or "").lower() == wanted:
                    return _account_from_user(user)
            if len(users) < 200:
                return None
            page += 1

    def delete_account(self, account_id: str) -> bool:
        try:
            self.http.request("DELETE", f"/auth/v1/admin/users/{account_id}", missing_ok=True)
        except _NotFound:
            logger.debug("Account %s already absent", account_id)
            return False
        logger.info("Deleted identity account %s", account_id)
        return True

    def verify_session(self, token: str) -> IdentityAccount:
        """Verify an access token signed with the project's JWT secret."""
        import jwt

        if not self.config.jwt_secret:
            raise IdentityProviderError("SUPABASE_JWT_SECRET is not configured")
        try:
            claims = jwt.decode(
                token,
                self.config.jwt_secret,
                algorithms=["HS256"],
                audience=SESSION_AUDIENCE,
            )
        except jwt.PyJWTError as exc:
            raise PermissionDeniedError(f"Invalid session token: {exc}") from exc
        role = (claims.get("user_metadata") or {}).get("role")
        return IdentityAccount(
            id=claims["sub"],
            email=claims.get("email", ""),
            role=OperatorRole(role) if role in {r.value for r in OperatorRole} else None,
        )


class PostgrestRecordStore(RecordStore):
    """Rows in Supabase tables via the PostgREST API."""

    def __init__(self, config: SupabaseConfig, http: SupabaseHTTPClient | None = None) -> None:
        self.config = config
        self.http = http or SupabaseHTTPClient(config, RecordStoreError)

    @staticmethod
    def _eq(value: Any) -> str:
        if isinstance(value, datetime):
            value = value.isoformat()
        if isinstance(value, bool):
            value = str(value).lower()
        return f"eq.{value}"

    def create_row(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        result = self.http.request(
            "POST",
            f"/rest/v1/{table}",
            [row],
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        return result[0] if result else dict(row)

    def get_row(self, table: str, row_id: str) -> dict[str, Any] | None:
        try:
            rows = self.http.request(
                "GET",
                f"/rest/v1/{table}",
                query={"id": self._eq(row_id), "select": "*"},
                missing_ok=True,
            )
        except _NotFound:
            return None
        return rows[0] if rows else None

    def update_row(self, table: str, row_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        rows = self.http.request(
            "PATCH",
            f"/rest/v1/{table}",
            {**changes, "updated_at": datetime.now().astimezone().isoformat()},
            query={"id": self._eq(row_id)},
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise EntityNotFoundError(row_id)
        return rows[0]

    def delete_row(self, table: str, row_id: str) -> bool:
        try:
            rows = self.http.request(
                "DELETE",
                f"/rest/v1/{table}",
                query={"id": self._eq(row_id)},
                headers={"Prefer": "return=representation"},
                missing_ok=True,
            )
        except _NotFound:
            return False
        return bool(rows)

    def list_rows(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        order_by: str = "created_at",
        descending: bool = True,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        query = {
            "select": "*",
            "order": f"{order_by}.{'desc' if descending else 'asc'}",
            "offset": str(offset),
        }
        if limit is not None:
            query["limit"] = str(limit)
        for key, value in (filters or {}).items():
            query[key] = self._eq(value)
        return self.http.request("GET", f"/rest/v1/{table}", query=query) or []
