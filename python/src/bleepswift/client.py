"""Construct accounts and large object uploads from a BleepSwiftConfig."""

from __future__ import annotations

import logging

import httpx

from bleepswift.account import Account
from bleepswift.backend import DEFAULT_USER_AGENT, TokenBackend, V1AuthBackend
from bleepswift.config import BleepSwiftConfig, SegmentConfig
from bleepswift.largeobject import LargeObject, LargeObjectStrategy
from bleepswift.logging_config import configure_logging
from bleepswift.metrics import init_metrics
from bleepswift.object import Object
from bleepswift.request import Body

logger = logging.getLogger(__name__)


def apply_config(config: BleepSwiftConfig) -> None:
    """Apply the process-wide parts of the configuration: logging and metrics."""
    configure_logging(config.logging.level, config.logging.format)
    if config.metrics.enabled:
        init_metrics()


async def account_from_config(
    config: BleepSwiftConfig,
    *,
    client: httpx.AsyncClient | None = None,
) -> Account:
    """Build an Account from the auth and http sections.

    A pre-obtained token (``storage_url`` and ``token``) takes precedence.
    Otherwise v1 authentication is performed with ``auth_url``, ``user``
    and ``key`` before the Account is returned.

    Raises:
        ValueError: If neither set of credentials is complete.
    """
    auth = config.auth
    user_agent = config.http.user_agent or DEFAULT_USER_AGENT

    if auth.storage_url and auth.token:
        backend = TokenBackend(
            auth.storage_url,
            auth.token,
            client=client,
            user_agent=user_agent,
            timeout=config.http.timeout,
        )
        return Account(backend)

    if auth.auth_url and auth.user and auth.key:
        v1_backend = V1AuthBackend(
            auth.auth_url,
            auth.user,
            auth.key,
            client=client,
            user_agent=user_agent,
            timeout=config.http.timeout,
        )
        await v1_backend.authenticate()
        return Account(v1_backend)

    raise ValueError(
        "auth config requires either storage_url and token, or auth_url, user and key"
    )


async def upload_large_object(
    obj: Object,
    content: Body,
    segments: SegmentConfig,
) -> LargeObject:
    """Upload ``content`` as a large object, replacing ``obj``.

    Segments go to the container named like the object's container plus
    ``segments.container_suffix`` (created if needed), below the prefix
    ``<object name>/``. Segments of a previous large object at the same
    location are deleted.
    """
    segment_container = obj.container.account.container(
        obj.container.name + segments.container_suffix
    )
    await segment_container.ensure_exists()

    lo = await obj.as_new_large_object(
        segment_container,
        obj.name + "/",
        strategy=LargeObjectStrategy(segments.strategy),
        delete_segments=True,
    )
    await lo.append(content, segment_size=segments.segment_size)
    await lo.write_manifest()
    logger.info(
        "Uploaded %s as %s large object with %d segments",
        obj.full_name,
        segments.strategy,
        len(lo.segments()),
    )
    return lo
