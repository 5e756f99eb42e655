"""GitHub OAuth provider client."""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from agenthub.auth.oauth import ProviderExchangeError, ProviderProfileError
from agenthub.config import Settings
from agenthub.core.logging import get_logger

logger = get_logger(__name__)

PROVIDER_NAME = "github"
USER_AGENT = "AIHub"
MAX_RESPONSE_BYTES = 1 << 20


@dataclass(frozen=True)
class GitHubUser:
    """Subset of the GitHub profile that is persisted on the identity row."""

    id: int
    login: str
    name: str = ""
    avatar_url: str = ""
    html_url: str = ""

    @property
    def subject(self) -> str:
        return str(self.id)


class GitHubOAuthClient:
    """Token exchange and profile lookup against GitHub."""

    provider = PROVIDER_NAME

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        token_url: str,
        user_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.user_url = user_url
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "GitHubOAuthClient":
        return cls(
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            token_url=settings.github_token_url,
            user_url=settings.github_user_url,
            timeout=settings.oauth_http_timeout_seconds,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": USER_AGENT},
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _read_json(self, response: httpx.Response) -> Any:
        body = bytearray()
        async for chunk in response.aiter_bytes():
            body.extend(chunk)
            if len(body) > MAX_RESPONSE_BYTES:
                raise ValueError("response body too large")
        return json.loads(bytes(body))

    async def exchange_code(self, code: str, redirect_uri: str, code_verifier: str = "") -> str:
        """Exchange an authorization code for an access token.

        Raises:
            ProviderExchangeError: On transport failure, non-2xx status, a
                provider-reported ``error`` or a missing token.
        """
        form: Dict[str, str] = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "redirect_uri": redirect_uri,
        }
        if code_verifier:
            form["code_verifier"] = code_verifier

        try:
            async with self.client.stream(
                "POST",
                self.token_url,
                data=form,
                headers={"Accept": "application/json"},
            ) as response:
                if not response.is_success:
                    raise ProviderExchangeError(f"token endpoint returned {response.status_code}")
                payload = await self._read_json(response)
        except httpx.HTTPError as e:
            raise ProviderExchangeError(f"token request failed: {type(e).__name__}") from e
        except ValueError as e:
            raise ProviderExchangeError(f"token response unreadable: {e}") from e

        if not isinstance(payload, dict):
            raise ProviderExchangeError("token response is not an object")
        error = str(payload.get("error") or "").strip()
        if error:
            raise ProviderExchangeError(f"token endpoint error: {error}")
        access_token = str(payload.get("access_token") or "").strip()
        if not access_token:
            raise ProviderExchangeError("token response missing access_token")
        return access_token

    async def fetch_user(self, access_token: str) -> GitHubUser:
        """Fetch the authenticated user's profile.

        Raises:
            ProviderProfileError: On transport failure, non-2xx status or a
                profile without a numeric id and login.
        """
        try:
            async with self.client.stream(
                "GET",
                self.user_url,
                headers={
                    "Accept": "application/vnd.github+json",
                    "Authorization": f"Bearer {access_token}",
                },
            ) as response:
                if not response.is_success:
                    raise ProviderProfileError(f"user endpoint returned {response.status_code}")
                payload = await self._read_json(response)
        except httpx.HTTPError as e:
            raise ProviderProfileError(f"user request failed: {type(e).__name__}") from e
        except ValueError as e:
            raise ProviderProfileError(f"user response unreadable: {e}") from e

        return parse_github_user(payload)


def parse_github_user(payload: Any) -> GitHubUser:
    """Validate a decoded ``/user`` response."""
    if not isinstance(payload, dict):
        raise ProviderProfileError("user response is not an object")

    raw_id = payload.get("id")
    # bool is an int subclass; a JSON true is not an account id
    if isinstance(raw_id, bool) or not isinstance(raw_id, int) or raw_id == 0:
        raise ProviderProfileError("user response missing numeric id")
    login = str(payload.get("login") or "").strip()
    if not login:
        raise ProviderProfileError("user response missing login")

    return GitHubUser(
        id=raw_id,
        login=login,
        name=str(payload.get("name") or "").strip(),
        avatar_url=str(payload.get("avatar_url") or "").strip(),
        html_url=str(payload.get("html_url") or "").strip(),
    )
