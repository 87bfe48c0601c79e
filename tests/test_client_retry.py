#!/usr/bin/env python3
"""Tests for client connection and retry logic."""
import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from tenacity import stop_after_attempt, wait_none

from clipsession.address import ServerAddress
from clipsession.client_retry import run_client_connection, run_client_with_retry
from clipsession.errors import NotConnected, SessionNotFound

ADDRESS = ServerAddress(socket_path="/tmp/test.sock")


def attempts(count: int):
    """run_client_with_retry limited to count attempts with no waiting."""
    return run_client_with_retry.retry_with(
        stop=stop_after_attempt(count), wait=wait_none(), reraise=True
    )


@pytest.fixture
def mock_client() -> MagicMock:
    client = MagicMock()
    client.go_online = AsyncMock()
    client.go_offline = AsyncMock()
    return client


def make_service(reason: Exception | None = None) -> MagicMock:
    """Create a mock RemoteService whose connection ends immediately."""
    service = MagicMock()
    service.wait_closed = AsyncMock()
    service.close = AsyncMock()
    service.close_reason = reason or NotConnected("Server closed the connection")
    return service


@pytest.mark.asyncio
async def test_connect_failure_is_logged_and_retried(
    mock_client: MagicMock, caplog: pytest.LogCaptureFixture
) -> None:
    with patch(
        "clipsession.client_retry.RemoteService.connect",
        new_callable=AsyncMock,
        side_effect=ConnectionError("refused"),
    ) as mock_connect:
        with caplog.at_level(logging.WARNING):
            with pytest.raises(ConnectionError):
                await attempts(3)(ADDRESS, mock_client)

    assert mock_connect.await_count == 3
    assert "will retry" in caplog.text
    mock_client.go_online.assert_not_called()


@pytest.mark.asyncio
async def test_each_connection_brings_client_online_then_offline(mock_client: MagicMock) -> None:
    """Test every successful connect goes online and every loss goes offline."""
    services = [make_service(), make_service()]
    on_online = MagicMock()

    with patch(
        "clipsession.client_retry.RemoteService.connect",
        new_callable=AsyncMock,
        side_effect=[ConnectionError("refused"), *services],
    ):
        with pytest.raises(ConnectionError, match="Server closed the connection"):
            await attempts(3)(ADDRESS, mock_client, on_online)

    assert [c.args[0] for c in mock_client.go_online.await_args_list] == services
    assert mock_client.go_offline.await_count == 2
    assert on_online.call_count == 2
    for service in services:
        service.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_connection_lost_during_join_is_retried(mock_client: MagicMock) -> None:
    mock_client.go_online.side_effect = [NotConnected("dropped"), None]
    services = [make_service(), make_service()]

    with patch(
        "clipsession.client_retry.RemoteService.connect",
        new_callable=AsyncMock,
        side_effect=services,
    ):
        with pytest.raises(ConnectionError):
            await attempts(2)(ADDRESS, mock_client)

    assert mock_client.go_online.await_count == 2
    services[0].wait_closed.assert_not_called()
    services[1].wait_closed.assert_awaited_once()


@pytest.mark.asyncio
async def test_vanished_session_is_not_retried(mock_client: MagicMock) -> None:
    mock_client.go_online.side_effect = SessionNotFound("Invalid session code: K3F9Q")
    service = make_service()

    with patch(
        "clipsession.client_retry.RemoteService.connect",
        new_callable=AsyncMock,
        return_value=service,
    ) as mock_connect:
        with pytest.raises(SessionNotFound):
            await attempts(5)(ADDRESS, mock_client)

    assert mock_connect.await_count == 1
    service.close.assert_awaited_once()
    mock_client.go_offline.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_client_connection_stops_on_shutdown(mock_client: MagicMock) -> None:
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def run_forever(address, client, on_online=None):
        started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancelled.set()
            raise

    shutdown_requested = asyncio.Event()
    with patch("clipsession.client_retry.run_client_with_retry", run_forever):
        task = asyncio.create_task(run_client_connection(ADDRESS, mock_client, shutdown_requested))
        await started.wait()
        shutdown_requested.set()
        await task

    assert cancelled.is_set()


@pytest.mark.asyncio
async def test_run_client_connection_propagates_fatal_error(mock_client: MagicMock) -> None:
    async def fail(address, client, on_online=None):
        raise SessionNotFound()

    with patch("clipsession.client_retry.run_client_with_retry", fail):
        with pytest.raises(SessionNotFound):
            await run_client_connection(ADDRESS, mock_client, asyncio.Event())
