"""HTTP backends for BleepSwift.

A backend represents one Swift account on one server. It knows the
account's endpoint URL and sends requests against it, adding the
``X-Auth-Token`` header and renewing the token once when the server answers
``401 Unauthorized``.

Any authentication scheme that reduces to "add a token to the request and
fetch a new token on 401" can be plugged in by implementing ``Backend``.
Two implementations are provided:

    TokenBackend:   a pre-obtained token, with an optional async callback
                    that fetches a new one.
    V1AuthBackend:  Swift v1 authentication (TempAuth, SwAuth and the v1
                    compatibility endpoints of most Swift deployments).
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

import httpx

from bleepswift import __version__
from bleepswift.errors import UnexpectedStatusCodeError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = f"bleepswift/{__version__}"
DEFAULT_TIMEOUT = 30.0

# Called with the token that was rejected; returns a fresh token.
ReauthCallback = Callable[[str], Awaitable[str]]


class Backend(Protocol):
    """Protocol defining the interface between BleepSwift and an authenticated
    connection to a Swift account."""

    @property
    def endpoint_url(self) -> str:
        """The account's endpoint URL, e.g. ``http://host/v1/AUTH_projectid/``.

        The trailing slash is required.
        """
        ...

    def clone(self, new_endpoint_url: str) -> Backend:
        """Return a deep clone of this backend, rebased on ``new_endpoint_url``.

        Used by Account.switch_account(). Changes to the clone's endpoint must
        not leak back into the original.
        """
        ...

    async def do(
        self,
        request: httpx.Request,
        rebuild: Callable[[], httpx.Request] | None = None,
    ) -> httpx.Response:
        """Send ``request`` with authentication headers added.

        If the server responds with 401, the backend shall acquire a new token
        and send the request returned by ``rebuild()`` once. Without
        ``rebuild`` (the body cannot be replayed), the 401 response is
        returned after renewing the token. The returned response is
        streaming; the caller is responsible for reading and closing it.
        """
        ...


class TokenBackend:
    """Backend using a pre-obtained auth token.

    Attributes:
        token: The current auth token.
        client: The httpx.AsyncClient used for sending requests.
        user_agent: Value for the User-Agent request header.
    """

    def __init__(
        self,
        endpoint_url: str,
        token: str = "",
        *,
        client: httpx.AsyncClient | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        reauthenticate: ReauthCallback | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the backend.

        Args:
            endpoint_url: The account's endpoint URL.
            token: The auth token to send in X-Auth-Token.
            client: Optional preconfigured httpx.AsyncClient.
            user_agent: Value for the User-Agent request header.
            reauthenticate: Optional coroutine function that receives the
                rejected token and returns a fresh one.
            timeout: Request timeout in seconds when creating a client.
        """
        self._endpoint_url = _with_trailing_slash(endpoint_url)
        self.token = token
        self.client = client if client is not None else httpx.AsyncClient(timeout=timeout)
        self.user_agent = user_agent
        self._reauthenticate = reauthenticate
        self._lock = asyncio.Lock()

    @property
    def endpoint_url(self) -> str:
        return self._endpoint_url

    def clone(self, new_endpoint_url: str) -> TokenBackend:
        cloned = copy.copy(self)
        cloned._endpoint_url = _with_trailing_slash(new_endpoint_url)
        cloned._lock = asyncio.Lock()
        return cloned

    async def do(
        self,
        request: httpx.Request,
        rebuild: Callable[[], httpx.Request] | None = None,
    ) -> httpx.Response:
        token = await self.get_token()
        response = await self._send(request, token)
        if response.status_code != 401 or not self.can_reauthenticate():
            return response

        await response.aread()
        await response.aclose()
        logger.info("Auth token rejected, reauthenticating")
        await self.renew_token(token)
        if rebuild is None:
            logger.warning(
                "Not retrying %s %s after reauthentication: request body cannot be replayed",
                request.method,
                request.url.path,
            )
            return response
        return await self._send(rebuild(), await self.get_token())

    async def _send(self, request: httpx.Request, token: str) -> httpx.Response:
        request.headers["User-Agent"] = self.user_agent
        if token:
            request.headers["X-Auth-Token"] = token
        return await self.client.send(request, stream=True)

    async def get_token(self) -> str:
        """Return the token to use for the next request."""
        return self.token

    def can_reauthenticate(self) -> bool:
        return self._reauthenticate is not None

    async def renew_token(self, rejected_token: str) -> None:
        """Replace ``rejected_token`` with a fresh one.

        If another task already renewed the token in the meantime, nothing
        happens.
        """
        async with self._lock:
            if self.token != rejected_token:
                return
            if self._reauthenticate is None:
                raise RuntimeError("TokenBackend has no reauthenticate callback")
            self.token = await self._reauthenticate(rejected_token)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()


class V1AuthBackend(TokenBackend):
    """Backend authenticating with Swift's v1 auth protocol.

    ``GET auth_url`` with ``X-Auth-User`` and ``X-Auth-Key`` returns the token
    in ``X-Auth-Token`` and the account endpoint in ``X-Storage-Url``.

    The endpoint URL is only known after ``authenticate()`` has run, so call
    it once before constructing an Account::

        backend = V1AuthBackend("http://swift:8080/auth/v1.0", "test:tester", "testing")
        await backend.authenticate()
        account = Account(backend)
    """

    def __init__(
        self,
        auth_url: str,
        user: str,
        key: str,
        *,
        client: httpx.AsyncClient | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__("", client=client, user_agent=user_agent, timeout=timeout)
        self.auth_url = auth_url
        self.user = user
        self.key = key
        self._endpoint_url = ""
        # set by clone(); the storage URL from auth responses is then ignored
        self._fixed_endpoint_url = ""

    @property
    def endpoint_url(self) -> str:
        if not self._endpoint_url:
            raise RuntimeError("V1AuthBackend.authenticate() must be called first")
        return self._endpoint_url

    def clone(self, new_endpoint_url: str) -> V1AuthBackend:
        cloned = copy.copy(self)
        cloned._endpoint_url = _with_trailing_slash(new_endpoint_url)
        cloned._fixed_endpoint_url = cloned._endpoint_url
        cloned._lock = asyncio.Lock()
        return cloned

    def can_reauthenticate(self) -> bool:
        return True

    async def get_token(self) -> str:
        if not self.token:
            await self.renew_token("")
        return self.token

    async def renew_token(self, rejected_token: str) -> None:
        async with self._lock:
            if self.token != rejected_token:
                return
            await self._fetch_token()

    async def authenticate(self) -> None:
        """Fetch a token and the storage URL from the auth endpoint."""
        async with self._lock:
            await self._fetch_token()

    async def _fetch_token(self) -> None:
        response = await self.client.get(
            self.auth_url,
            headers={
                "X-Auth-User": self.user,
                "X-Auth-Key": self.key,
                "User-Agent": self.user_agent,
            },
        )
        if response.status_code not in (200, 204):
            raise UnexpectedStatusCodeError((200, 204), response, response.content)

        self.token = response.headers.get("X-Auth-Token", "")
        if not self._fixed_endpoint_url:
            self._endpoint_url = _with_trailing_slash(response.headers.get("X-Storage-Url", ""))
        logger.info("Authenticated against %s as %s", self.auth_url, self.user)


def _with_trailing_slash(url: str) -> str:
    if url and not url.endswith("/"):
        return url + "/"
    return url
