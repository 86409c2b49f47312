import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

import httpx

from field_impact.errors import AuthError, SchemaGatewayError
from field_impact.settings import DEFAULT_API_VERSION, DEFAULT_HTTP_TIMEOUT, get_env

log = logging.getLogger(__name__)


# =========================================
# PROTOCOLS
# =========================================

class TokenProvider(Protocol):
    async def get_valid_access_token(self, user_id: str) -> str:
        ...


class SchemaGateway(Protocol):
    async def fetch_object_list(self) -> List[str]:
        ...

    async def fetch_object_schema(self, object_name: str) -> Dict[str, Any]:
        ...


GatewayFactory = Callable[[str, str], SchemaGateway]


class StaticTokenProvider:
    """Serves tokens from an in-memory mapping of user id -> access token."""

    def __init__(self, tokens: Optional[Dict[str, str]] = None):
        self.tokens: Dict[str, str] = dict(tokens or {})

    def set_token(self, user_id: str, token: str) -> None:
        self.tokens[user_id] = token

    async def get_valid_access_token(self, user_id: str) -> str:
        token = self.tokens.get(user_id)
        if not token:
            raise AuthError(
                "No tokens found for this user. Please authenticate first.",
                status_code=401,
                error_code="MISSING_TOKENS",
            )
        return token


# =========================================
# SALESFORCE DESCRIBE API
# =========================================

def _api_error(status: int, body: str) -> Exception:
    if status == 401:
        return AuthError("Authentication failed", status, "AUTH_FAILED")
    if status == 403:
        return AuthError("Insufficient permissions", status, "INSUFFICIENT_PERMISSIONS")
    if status == 404:
        return SchemaGatewayError(status, f"Not found: {body[:300]}", "NOT_FOUND")
    if 400 <= status < 500:
        return SchemaGatewayError(status, f"Client error: {body[:300]}", "CLIENT_ERROR")
    return SchemaGatewayError(status, f"Salesforce server error: {body[:300]}", "SERVER_ERROR")


class SalesforceSchemaGateway:
    def __init__(
        self,
        instance_url: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ):
        version = api_version[1:] if api_version.startswith("v") else api_version
        self.base_url = f"{instance_url.rstrip('/')}/services/data/v{version}"
        self.access_token = access_token
        self.client = client
        self.timeout = timeout

    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
            "User-Agent": "field-impact/1.0",
        }

    async def _send(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        try:
            return await client.get(url, headers=self.headers())
        except httpx.HTTPError as exc:
            raise SchemaGatewayError(0, f"Network error while connecting to Salesforce: {exc}") from exc

    async def _get_json(self, path: str) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        log.debug("[gateway] GET %s", url)

        if self.client is not None:
            response = await self._send(self.client, url)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await self._send(client, url)

        if response.status_code == 302 or "text/html" in response.headers.get("content-type", ""):
            raise AuthError("Salesforce authentication failed - session invalid or expired", 401, "AUTH_FAILED")

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise _api_error(exc.response.status_code, exc.response.text) from exc

        try:
            data = response.json()
        except Exception as exc:  # noqa: BLE001
            raise SchemaGatewayError(502, "Salesforce returned non-JSON content.") from exc
        if not isinstance(data, dict):
            raise SchemaGatewayError(502, f"Unexpected payload type from {path}: {type(data).__name__}")
        return data

    async def fetch_object_list(self) -> List[str]:
        data = await self._get_json("/sobjects")
        sobjects = data.get("sobjects") or []
        return [entry["name"] for entry in sobjects if isinstance(entry, dict) and entry.get("name")]

    async def fetch_object_schema(self, object_name: str) -> Dict[str, Any]:
        return await self._get_json(f"/sobjects/{object_name}/describe")


def salesforce_gateway_factory(
    instance_url: Optional[str] = None,
    api_version: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
) -> GatewayFactory:
    """
    Adapt SalesforceSchemaGateway to the cache manager's (user_id, token) factory signature.

    Without an explicit ``instance_url`` the instance and API version come from
    ``SF_INSTANCE_URL`` / ``SF_API_VERSION``; ConfigurationError if the URL is unset.
    """
    if instance_url is None:
        env = get_env()
        instance_url = env["INSTANCE_URL"]
        api_version = api_version or env["API_VERSION"]
    api_version = api_version or DEFAULT_API_VERSION

    def _factory(user_id: str, access_token: str) -> SalesforceSchemaGateway:
        return SalesforceSchemaGateway(
            instance_url,
            access_token,
            api_version=api_version,
            client=client,
            timeout=timeout,
        )

    return _factory
