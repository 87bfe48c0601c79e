#!/usr/bin/env python3
"""Server mode implementation for clipsession.

The server owns the session registry, the entry store, the change channel
and the attachment directory. It listens on a Unix domain socket or a TCP
address and serves any number of clients concurrently until it receives
SIGINT or SIGTERM.

Usage:
    clipsession --socket /path/to/socket serve --attachments DIR
"""

from __future__ import annotations

import asyncio
import logging
import signal
from functools import partial
from typing import TYPE_CHECKING

from clipsession.attachments import LocalAttachmentStore
from clipsession.connections import ConnectionRegistry
from clipsession.limits import Limits
from clipsession.server_handler import handle_client
from clipsession.server_socket import check_socket_state, cleanup_socket, print_startup_message
from clipsession.service import SessionService

if TYPE_CHECKING:
    from clipsession.address import ServerAddress

logger = logging.getLogger(__name__)


async def start_listening(
    address: ServerAddress,
    service: SessionService,
    connections: ConnectionRegistry,
) -> asyncio.AbstractServer:
    """Bind the listening socket and route connections to handle_client.

    Args:
        address: Where to listen.
        service: The server facade.
        connections: Process-wide connection table.

    Returns:
        The started asyncio server.
    """
    handler = partial(handle_client, service, connections)
    if address.socket_path is not None:
        check_socket_state(address.socket_path)
        return await asyncio.start_unix_server(handler, path=address.socket_path)
    return await asyncio.start_server(handler, address.host, address.port)


async def run_server(
    address: ServerAddress,
    attachment_dir: str | None = None,
    base_url: str = "",
    limits: Limits = Limits(),
    shutdown_requested: asyncio.Event | None = None,
) -> None:
    """Run the server until SIGINT or SIGTERM.

    The socket file of a Unix address is removed on the way out, but only
    once this server has bound it.

    Args:
        address: Where to listen.
        attachment_dir: Directory for attachments; None refuses uploads.
        base_url: Public URL prefix under which attachment_dir is served.
        limits: Size ceilings for new entries.
        shutdown_requested: Stops the server when set; the signal handlers
            set it too.

    Raises:
        ServerSocketError: If the Unix socket path is held by a live server.
    """
    attachments = LocalAttachmentStore(attachment_dir, base_url) if attachment_dir else None
    service = SessionService(attachments=attachments, limits=limits)
    connections = ConnectionRegistry()

    server = await start_listening(address, service, connections)

    if shutdown_requested is None:
        shutdown_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, shutdown_requested.set)
    loop.add_signal_handler(signal.SIGTERM, shutdown_requested.set)
    print_startup_message(address)

    # Open connections are not awaited here; asyncio.run() cancels their
    # handlers, which release their subscriptions on the way out.
    try:
        await shutdown_requested.wait()
        logger.debug("Shutdown requested")
    finally:
        server.close()
        service.close()
        await connections.clear()
        loop.remove_signal_handler(signal.SIGINT)
        loop.remove_signal_handler(signal.SIGTERM)
        if address.socket_path is not None:
            cleanup_socket(address.socket_path)
