"""Temporary URLs: signed links granting time-limited access to one object.

The signature is an HMAC over ``METHOD\\nEXPIRES\\nPATH``, keyed with one of
the account's or container's temp URL keys (``X-Account-Meta-Temp-URL-Key``
or ``X-Container-Meta-Temp-URL-Key``).
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING
from urllib.parse import unquote, urlsplit

from bleepswift.capabilities import DEFAULT_TEMPURL_DIGESTS
from bleepswift.errors import NotSupportedError

if TYPE_CHECKING:
    from bleepswift.object import Object

_DIGESTS = {
    "sha512": hashlib.sha512,
    "sha256": hashlib.sha256,
    "sha1": hashlib.sha1,
}

# Strongest first.
DIGEST_PREFERENCE = ("sha512", "sha256", "sha1")


def sign_temp_url(url: str, key: str, method: str, expires: int, digest: str = "sha256") -> str:
    """Append a temp URL signature to ``url``.

    Args:
        url: The object URL.
        key: A temp URL key of the account or container.
        method: The HTTP method to grant, e.g. "GET" or "PUT".
        expires: UNIX timestamp after which the URL is no longer valid.
        digest: "sha1", "sha256" or "sha512".

    Returns:
        ``url`` with ``temp_url_sig`` and ``temp_url_expires`` query values.
    """
    try:
        digestmod = _DIGESTS[digest]
    except KeyError:
        raise ValueError(f"unsupported temp URL digest: {digest!r}") from None

    path = unquote(urlsplit(url).path)
    payload = f"{method}\n{expires}\n{path}"
    signature = hmac.new(key.encode("utf-8"), payload.encode("utf-8"), digestmod).hexdigest()
    return f"{url}?temp_url_sig={signature}&temp_url_expires={expires}"


def choose_digest(server_digests: Iterable[str], allowed_digests: Iterable[str] | None = None) -> str:
    """Return the strongest digest supported by both sides.

    Raises:
        NotSupportedError: If there is no common digest.
    """
    server = set(server_digests)
    allowed = set(allowed_digests) if allowed_digests is not None else set(DIGEST_PREFERENCE)
    for digest in DIGEST_PREFERENCE:
        if digest in server and digest in allowed:
            return digest
    raise NotSupportedError("no temp URL digest supported by both client and server")


async def temp_url(
    obj: Object,
    key: str,
    method: str,
    expires_at: datetime | int,
    allowed_digests: list[str] | None = None,
) -> str:
    """Generate a temp URL for ``obj`` using the server's advertised digests.

    Raises:
        NotSupportedError: If the server has no tempurl middleware, or no
            common digest exists.
    """
    caps = await obj.container.account.capabilities()
    if caps.tempurl is None:
        raise NotSupportedError()

    server_digests = caps.tempurl.allowed_digests or DEFAULT_TEMPURL_DIGESTS
    digest = choose_digest(server_digests, allowed_digests)
    if isinstance(expires_at, datetime):
        expires = int(expires_at.timestamp())
    else:
        expires = int(expires_at)
    return sign_temp_url(obj.url, key, method, expires, digest)
