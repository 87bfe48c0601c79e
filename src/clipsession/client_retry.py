#!/usr/bin/env python3
"""Client connection and retry logic for clipsession.

This module keeps a SessionClient connected, using tenacity for
exponential backoff. Each successful connection brings the client online
(rejoin or full-refetch reconciliation); each loss takes it offline so
writes are refused until the next reconnect.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress
from typing import TYPE_CHECKING

from tenacity import retry, retry_if_exception_type, stop_never, wait_exponential

from clipsession.errors import ChannelError, NotConnected
from clipsession.limits import INITIAL_WAIT, MAX_WAIT, WAIT_MULTIPLIER
from clipsession.remote import RemoteService

if TYPE_CHECKING:
    from clipsession.address import ServerAddress
    from clipsession.session_client import SessionClient

logger = logging.getLogger(__name__)


@retry(
    wait=wait_exponential(
        multiplier=WAIT_MULTIPLIER,
        min=INITIAL_WAIT,
        max=MAX_WAIT,
    ),
    retry=retry_if_exception_type((ConnectionError, NotConnected, ChannelError)),
    stop=stop_never,
)
async def run_client_with_retry(
    address: ServerAddress,
    client: SessionClient,
    on_online: Callable[[SessionClient], None] | None = None,
) -> None:
    """Connect, bring the client online and stay until the connection drops.

    Wrapped with a tenacity retry decorator for automatic reconnection on
    connection failures. Failures other than lost connectivity (for
    example a remembered session that no longer exists) are not retried.

    Args:
        address: Where the server listens.
        client: The session client to keep online.
        on_online: Called after every successful (re)join.

    Note:
        This function never returns normally - it either runs forever
        or raises an exception that doesn't trigger retry.
    """
    logger.debug("Connecting to server at %s", address)
    try:
        service = await RemoteService.connect(address)
    except ConnectionError:
        logger.warning("Connection to %s failed, will retry", address)
        raise

    logger.debug("Connected to server at %s", address)
    try:
        await client.go_online(service)
        if on_online is not None:
            on_online(client)
        await service.wait_closed()
        logger.warning("Connection lost: %s, will retry", service.close_reason)
        raise ConnectionError(str(service.close_reason))
    except (NotConnected, ChannelError) as e:
        logger.warning("Connection lost: %s, will retry", e)
        raise
    finally:
        await client.go_offline()
        await service.close()


async def run_client_connection(
    address: ServerAddress,
    client: SessionClient,
    shutdown_requested: asyncio.Event,
    on_online: Callable[[SessionClient], None] | None = None,
) -> None:
    """Run the retry loop until shutdown is requested.

    Args:
        address: Where the server listens.
        client: The session client to keep online.
        shutdown_requested: Set by signal handlers to stop cleanly.
        on_online: Called after every successful (re)join.

    Raises:
        ClipSessionError: A non-retryable failure from the retry loop.
    """
    retry_task = asyncio.create_task(run_client_with_retry(address, client, on_online))
    stop_task = asyncio.create_task(shutdown_requested.wait())
    done, _ = await asyncio.wait({retry_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    for task in (retry_task, stop_task):
        if task not in done:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
    if retry_task in done:
        retry_task.result()
