"""Caspio REST API client.

Handles client-credentials authentication and the table, view, application,
file, task and directory operations exposed as MCP tools.
"""

import asyncio
import logging
import time
from typing import Any, Optional
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
REFRESH_MARGIN_SECONDS = 5 * 60

QUERY_KEYS = {
    "select": "q.select",
    "where": "q.where",
    "order_by": "q.orderBy",
    "group_by": "q.groupBy",
    "limit": "q.limit",
    "page_number": "q.pageNumber",
    "page_size": "q.pageSize",
}


class CaspioAPIError(Exception):
    """A Caspio endpoint answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class CaspioAuthError(CaspioAPIError):
    """The Caspio token endpoint rejected the client credentials."""


def _seg(value: str) -> str:
    return quote(str(value), safe="")


def build_query(**options) -> dict[str, str]:
    """Map keyword query options onto Caspio's ``q.*`` parameters, skipping empty ones."""
    params = {}
    for name, value in options.items():
        if value in (None, ""):
            continue
        params[QUERY_KEYS[name]] = str(value)
    return params


class CaspioClient:
    """Async client for one Caspio account's REST API (v2 and v3)."""

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._access_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._token_expiry: Optional[float] = None

    async def __aenter__(self) -> "CaspioClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def token_endpoint(self) -> str:
        return f"{self.base_url}/oauth/token"

    @property
    def api_base(self) -> str:
        return f"{self.base_url}/rest/v2"

    @property
    def api_base_v3(self) -> str:
        return f"{self.base_url}/integrations/rest/v3"

    # ============== Authentication ==============

    def _store_tokens(self, data: dict) -> None:
        self._access_token = data["access_token"]
        self._refresh_token = data.get("refresh_token")
        self._token_expiry = time.time() + int(data.get("expires_in", 0))

    async def authenticate(self) -> None:
        """Authenticate using the OAuth 2.0 client credentials flow."""
        try:
            response = await self._http.post(
                self.token_endpoint,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise CaspioAuthError(f"Authentication failed: {e}") from e

        if response.is_error:
            raise CaspioAuthError(
                f"Authentication failed: {response.status_code} - {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        try:
            self._store_tokens(response.json())
        except (ValueError, KeyError) as e:
            raise CaspioAuthError(f"Authentication failed: malformed token response ({e})") from e

    async def refresh_access_token(self) -> None:
        """Refresh the access token, falling back to full authentication."""
        if not self._refresh_token:
            await self.authenticate()
            return

        try:
            response = await self._http.post(
                self.token_endpoint,
                data={"grant_type": "refresh_token", "refresh_token": self._refresh_token},
                auth=(self.client_id, self.client_secret),
            )
        except httpx.HTTPError as e:
            logger.info(f"[CASPIO] Token refresh failed ({e}), re-authenticating")
            await self.authenticate()
            return

        if response.is_error:
            logger.info(f"[CASPIO] Token refresh rejected ({response.status_code}), re-authenticating")
            await self.authenticate()
            return

        self._store_tokens(response.json())

    async def _ensure_authenticated(self) -> None:
        if not self._access_token or self._token_expiry is None:
            await self.authenticate()
            return
        if self._token_expiry < time.time() + REFRESH_MARGIN_SECONDS:
            await self.refresh_access_token()

    async def _request(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
        params: dict = None,
        v3: bool = False,
    ) -> Any:
        await self._ensure_authenticated()

        url = f"{self.api_base_v3 if v3 else self.api_base}{endpoint}"
        kwargs = {"headers": {"Authorization": f"Bearer {self._access_token}"}}
        if params:
            kwargs["params"] = params
        if body is not None and method in ("POST", "PUT"):
            kwargs["json"] = body

        try:
            response = await self._http.request(method, url, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise CaspioAPIError(f"API request failed: {e}") from e

        if response.is_error:
            raise CaspioAPIError(
                f"API request failed: {response.status_code} - {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise CaspioAPIError(f"API returned invalid JSON: {e}", status_code=response.status_code) from e

    # ============== Tables ==============

    async def list_tables(self) -> list[str]:
        result = await self._request("GET", "/tables")
        return result.get("Result") or []

    async def get_table_definition(self, table_name: str) -> dict:
        result = await self._request("GET", f"/tables/{_seg(table_name)}")
        return result.get("Result")

    async def create_table(self, definition: dict) -> None:
        await self._request("POST", "/tables", definition)

    async def delete_table(self, table_name: str) -> None:
        await self._request("DELETE", f"/tables/{_seg(table_name)}")

    async def add_field(self, table_name: str, field: dict) -> None:
        await self._request("POST", f"/tables/{_seg(table_name)}/fields", field)

    async def delete_field(self, table_name: str, field_name: str) -> None:
        await self._request("DELETE", f"/tables/{_seg(table_name)}/fields/{_seg(field_name)}")

    # ============== Records ==============

    async def get_records(self, table_name: str, **options) -> list[dict]:
        result = await self._request(
            "GET", f"/tables/{_seg(table_name)}/records", params=build_query(**options)
        )
        return result.get("Result") or []

    async def create_record(self, table_name: str, record: dict) -> dict:
        result = await self._request(
            "POST", f"/tables/{_seg(table_name)}/records", record, params={"response": "rows"}
        )
        rows = result.get("Result")
        # Caspio answers with a list of inserted rows
        if isinstance(rows, list):
            return rows[0] if rows else {}
        return rows

    async def create_records(self, table_name: str, records: list[dict]) -> list[dict]:
        result = await self._request(
            "POST", f"/tables/{_seg(table_name)}/records", records, params={"response": "rows"}
        )
        return result.get("Result") or []

    async def update_records(self, table_name: str, updates: dict, where: str) -> int:
        result = await self._request(
            "PUT", f"/tables/{_seg(table_name)}/records", updates, params={"q.where": where}
        )
        return result.get("RecordsAffected") or 0

    async def delete_records(self, table_name: str, where: str) -> int:
        result = await self._request(
            "DELETE", f"/tables/{_seg(table_name)}/records", params={"q.where": where}
        )
        return result.get("RecordsAffected") or 0

    # ============== Views ==============

    async def list_views(self) -> list[str]:
        result = await self._request("GET", "/views")
        return result.get("Result") or []

    async def get_view_definition(self, view_name: str) -> dict:
        result = await self._request("GET", f"/views/{_seg(view_name)}")
        return result.get("Result")

    async def get_view_records(self, view_name: str, **options) -> list[dict]:
        result = await self._request(
            "GET", f"/views/{_seg(view_name)}/records", params=build_query(**options)
        )
        return result.get("Result") or []

    # ============== Applications ==============

    async def list_applications(self) -> list:
        result = await self._request("GET", "/applications")
        return result.get("Result") or []

    async def get_application(self, app_name: str) -> dict:
        result = await self._request("GET", f"/applications/{_seg(app_name)}")
        return result.get("Result")

    # ============== Files ==============

    async def list_files(self, folder_path: str = "/") -> list:
        result = await self._request("GET", f"/files/{_seg(folder_path)}")
        return result.get("Result") or []

    async def get_file_metadata(self, file_path: str) -> dict:
        result = await self._request("GET", f"/files/{_seg(file_path)}/metadata")
        return result.get("Result")

    async def delete_file(self, file_path: str) -> None:
        await self._request("DELETE", f"/files/{_seg(file_path)}")

    # ============== Scheduled tasks ==============

    async def list_tasks(self) -> list:
        result = await self._request("GET", "/tasks")
        return result.get("Result") or []

    async def get_task(self, task_name: str) -> dict:
        result = await self._request("GET", f"/tasks/{_seg(task_name)}")
        return result.get("Result")

    async def run_task(self, task_name: str) -> None:
        await self._request("POST", f"/tasks/{_seg(task_name)}/run")

    # ============== Directories (v3) ==============

    async def list_directories(self) -> list:
        result = await self._request("GET", "/directories", v3=True)
        return result.get("Result") or []

    async def get_directory(self, directory_name: str) -> dict:
        result = await self._request("GET", f"/directories/{_seg(directory_name)}", v3=True)
        return result.get("Result")

    async def list_directory_users(self, directory_name: str, **options) -> list:
        result = await self._request(
            "GET",
            f"/directories/{_seg(directory_name)}/users",
            params=build_query(**options),
            v3=True,
        )
        return result.get("Result") or []

    def _user_path(self, directory_name: str, external_key: str) -> str:
        return f"/directories/{_seg(directory_name)}/users/{_seg(external_key)}"

    async def get_directory_user(self, directory_name: str, external_key: str) -> dict:
        result = await self._request("GET", self._user_path(directory_name, external_key), v3=True)
        return result.get("Result")

    async def create_directory_user(self, directory_name: str, user: dict) -> dict:
        result = await self._request(
            "POST", f"/directories/{_seg(directory_name)}/users", user, v3=True
        )
        return result.get("Result")

    async def update_directory_user(self, directory_name: str, external_key: str, updates: dict) -> dict:
        result = await self._request(
            "PUT", self._user_path(directory_name, external_key), updates, v3=True
        )
        return result.get("Result")

    async def delete_directory_user(self, directory_name: str, external_key: str) -> None:
        await self._request("DELETE", self._user_path(directory_name, external_key), v3=True)

    async def activate_directory_user(self, directory_name: str, external_key: str) -> None:
        await self._request("POST", f"{self._user_path(directory_name, external_key)}/activate", v3=True)

    async def deactivate_directory_user(self, directory_name: str, external_key: str) -> None:
        await self._request("POST", f"{self._user_path(directory_name, external_key)}/deactivate", v3=True)

    async def authenticate_directory_user(self, directory_name: str, username: str, password: str) -> dict:
        result = await self._request(
            "POST",
            f"/directories/{_seg(directory_name)}/users/authenticate",
            {"username": username, "password": password},
            v3=True,
        )
        return result.get("Result")

    # ============== Utility ==============

    async def test_connection(self) -> bool:
        """Authenticate and perform a trivial read."""
        try:
            await self.authenticate()
            await self.list_tables()
            return True
        except CaspioAPIError as e:
            logger.info(f"[CASPIO] Connection test failed: {e}")
            return False

    async def get_account_summary(self) -> dict:
        tables, views, applications = await asyncio.gather(
            self.list_tables(), self.list_views(), self.list_applications()
        )
        return {"tables": tables, "views": views, "applications": applications}
