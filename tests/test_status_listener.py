# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring,protected-access
# pylint: disable=unused-argument,too-few-public-methods,no-member,use-implicit-booleaness-not-comparison,line-too-long
# pylint: disable=invalid-name,too-many-statements,too-many-instance-attributes,wrong-import-position,wrong-import-order
# pylint: disable=deprecated-module,too-many-locals,too-many-lines,attribute-defined-outside-init,unexpected-keyword-arg
# pylint: disable=duplicate-code
import asyncio
from unittest.mock import MagicMock

import pytest

from command_connection import CommandConnectionManager
from errors import UnauthorizedOrigin
from models import CommandConnection
from status_listener import StatusListener
from tests.fixtures.dummy import DummyReader, DummyWriter
from tests.helpers import make_options, make_registry, module_options

STATUS = b"HDR\n0001000000000000000000000000000000\n00000000\n"


def _listener(client_ip_filter=".*", options=None):
    registry, sink = make_registry(options)
    connections = MagicMock(spec=CommandConnectionManager)

    def _open(module):
        module.command_connection = CommandConnection()

    connections.open.side_effect = _open
    listener = StatusListener(
        registry, connections, sink,
        host="127.0.0.1", port=0, client_ip_filter=client_ip_filter,
    )
    return listener, registry, sink, connections


@pytest.mark.parametrize(
    "peer,expected",
    [
        (("192.168.1.5", 1), "192.168.1.5"),
        (("::ffff:10.0.0.5", 1, 0, 0), "10.0.0.5"),
        (None, None),
    ],
)
def test_peer_ip(peer, expected):
    assert StatusListener.peer_ip(DummyWriter(peer=peer)) == expected


def test_check_origin():
    listener, *_ = _listener(r"^192\.168\.1\.")
    listener.check_origin("192.168.1.5")
    with pytest.raises(UnauthorizedOrigin):
        listener.check_origin("10.0.0.5")


@pytest.mark.asyncio
async def test_rejected_origin_creates_nothing():
    listener, registry, sink, connections = _listener(r"^10\.")
    writer = DummyWriter(peer=("192.168.1.5", 40000))
    await listener.handle_connection(DummyReader(STATUS), writer)
    assert writer.is_closing()
    assert len(registry) == 0
    assert sink.published == []
    assert listener.rejected == 1
    connections.open.assert_not_called()


@pytest.mark.asyncio
async def test_status_push_publishes_delta():
    listener, registry, sink, connections = _listener()
    writer = DummyWriter()
    await listener.handle_connection(DummyReader([STATUS]), writer)

    module = registry.get("192168001005")
    assert module is not None
    connections.open.assert_called_once_with(module)
    values = dict(sink.values())
    assert values[module.channels["4R"].state_path] == 1
    assert values[module.channels["1R"].state_path] == 0
    assert values[module.channels["4R"].order_path] == 4
    assert listener.reports_ok == 1
    # connection ended so the listener slot is released
    assert module.listener_connection is None
    assert writer.is_closing()


@pytest.mark.asyncio
async def test_malformed_report_is_dropped():
    listener, registry, sink, _connections = _listener()
    writer = DummyWriter()
    await listener.handle_connection(DummyReader([b"HDR\n0001\n00000000\n", STATUS]), writer)
    assert listener.reports_bad == 1
    assert listener.reports_ok == 1
    # metadata + one status delta
    assert len(sink.deltas()) == 2


def test_on_data_swallows_unexpected_errors(monkeypatch):
    listener, registry, sink, _connections = _listener()
    module = registry.get_or_create("192.168.1.5")
    published = len(sink.published)

    def explode(_module, _payload):
        raise RuntimeError("boom")

    monkeypatch.setattr("status_listener.decode_status", explode)
    listener.on_data(module, STATUS)
    assert listener.reports_bad == 1
    assert len(sink.published) == published


@pytest.mark.asyncio
async def test_unknown_device_closes_connection():
    opts = make_options(modules=(module_options("192.168.1.5", device_id="NOPE"),))
    listener, registry, sink, connections = _listener(options=opts)
    writer = DummyWriter()
    await listener.handle_connection(DummyReader([STATUS]), writer)
    assert writer.is_closing()
    assert len(registry) == 0
    connections.open.assert_not_called()


@pytest.mark.asyncio
async def test_existing_command_connection_is_kept():
    listener, registry, _sink, connections = _listener()
    module = registry.get_or_create("192.168.1.5")
    module.command_connection = object()
    await listener.handle_connection(DummyReader([STATUS]), DummyWriter())
    connections.open.assert_not_called()


@pytest.mark.asyncio
async def test_new_connection_replaces_previous():
    listener, registry, _sink, _connections = _listener()
    first_reader = DummyReader(block=True)
    first_writer = DummyWriter()
    first = asyncio.create_task(listener.handle_connection(first_reader, first_writer))
    await asyncio.sleep(0)
    module = registry.get("192168001005")
    assert module.listener_connection is first_writer

    second_reader = DummyReader(block=True)
    second_writer = DummyWriter()
    second = asyncio.create_task(listener.handle_connection(second_reader, second_writer))
    await asyncio.sleep(0)
    assert module.listener_connection is second_writer
    assert first_writer.is_closing()

    # The stale connection ending must not clear the replacement
    first_reader.feed_eof()
    await first
    assert module.listener_connection is second_writer

    second_reader.feed_eof()
    await second
    assert module.listener_connection is None


@pytest.mark.asyncio
async def test_start_and_stop_binds_socket():
    listener, *_ = _listener()
    await listener.start()
    assert listener._server is not None
    await listener.stop()
    assert listener._server is None


@pytest.mark.asyncio
async def test_end_to_end_over_tcp():
    registry, sink = make_registry()
    connections = MagicMock(spec=CommandConnectionManager)
    listener = StatusListener(
        registry, connections, sink, host="127.0.0.1", port=0, client_ip_filter=r"^127\."
    )
    await listener.start()
    port = listener._server.sockets[0].getsockname()[1]

    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(STATUS)
    await writer.drain()
    for _ in range(100):
        if listener.reports_ok:
            break
        await asyncio.sleep(0.01)
    writer.close()
    await writer.wait_closed()
    await listener.stop()

    module = registry.get("127000000001")
    assert module is not None
    assert dict(sink.values())[module.channels["4R"].state_path] == 1


@pytest.mark.asyncio
async def test_status_data_reopens_dropped_command_connection():
    listener, registry, sink, connections = _listener()
    reader = DummyReader([STATUS], block=True)
    task = asyncio.create_task(listener.handle_connection(reader, DummyWriter()))
    await asyncio.sleep(0)
    module = registry.get("192168001005")
    assert connections.open.call_count == 1

    # command path drops while the status connection stays up
    module.command_connection = None
    reader.feed(STATUS)
    await asyncio.sleep(0)
    assert connections.open.call_count == 2
    assert module.command_connection is not None

    reader.feed(STATUS)
    await asyncio.sleep(0)
    assert connections.open.call_count == 2
    assert listener.reports_ok == 3

    reader.feed_eof()
    await task
