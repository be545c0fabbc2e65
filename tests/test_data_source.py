import asyncio
import socket
import threading

import pytest

from fakes import FakeQueryServer, serve_status, status_packet
from nonebot_plugin_mcdash.codec import pack_packet, pack_string
from nonebot_plugin_mcdash.config import config
from nonebot_plugin_mcdash.data_source import get_unified_status
from nonebot_plugin_mcdash.models import Endpoint, Player

STATUS = {
    "version": {"name": "Paper 1.21.1", "protocol": 767},
    "players": {"online": 2, "max": 10, "sample": [{"name": "Alice", "id": "u1"}]},
    "description": "§6Test Server",
}


@pytest.fixture
def fast_config(monkeypatch, tmp_path):
    modpack_config = tmp_path / "bcc-common.toml"
    modpack_config.write_text('[general]\nmodpackName = "ATM10"\n', encoding="utf-8")
    monkeypatch.setattr(config, "status_timeout", 2)
    monkeypatch.setattr(config, "query_timeout", 0.5)
    monkeypatch.setattr(config, "query_hosts", [])
    monkeypatch.setattr(config, "modpack_config_path", str(modpack_config))


@pytest.fixture
def listener():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(1)
    sock.settimeout(5)
    yield sock
    sock.close()


def run_status(listener: socket.socket, status: bytes):
    port = listener.getsockname()[1]
    thread = threading.Thread(target=serve_status, args=(listener, status))
    thread.start()
    try:
        return asyncio.run(get_unified_status(Endpoint(host="127.0.0.1", port=port)))
    finally:
        thread.join()


def test_online_server(fast_config, listener):
    status = run_status(listener, status_packet(STATUS))

    assert status.online is True
    assert status.host == "127.0.0.1"
    assert status.port == listener.getsockname()[1]
    assert status.version == "Paper 1.21.1"
    assert status.protocol_version == 767
    assert status.stripped_description == "Test Server"
    assert status.players.online == 2
    assert status.latency is not None
    assert status.query is None
    assert status.modpack is not None
    assert status.modpack.name == "ATM10"


def test_online_server_with_query(fast_config, listener):
    with FakeQueryServer(port=listener.getsockname()[1]):
        status = run_status(listener, status_packet(STATUS))

    assert status.online is True
    assert status.version == "Paper 1.21.1"
    assert status.players.sample == [Player(name="Alice", uuid="u1"), "Bob"]
    assert status.players.full_list == ["Alice", "Bob"]
    assert status.query is not None
    assert status.query.map == "world"
    assert status.query.plugins == "WorldEdit 7.3, LuckPerms 5.4"
    assert status.query.gametype == "Paper on 1.21.1"


def test_query_session_mismatch_is_not_merged(fast_config, listener):
    with FakeQueryServer(port=listener.getsockname()[1], mismatch=True):
        status = run_status(listener, status_packet(STATUS))

    assert status.online is True
    assert status.players.sample == [Player(name="Alice", uuid="u1")]
    assert status.players.full_list is None
    assert status.query is None


def test_deeply_nested_status_is_offline(fast_config, listener):
    nested = '{"description":' + "[" * 50000 + "]" * 50000 + "}"
    status = run_status(listener, pack_packet(0x00, pack_string(nested)))

    assert status.online is False
    assert "MALFORMED_STATUS_JSON" in (status.error or "")
    assert status.modpack is not None
    assert status.modpack.name == "ATM10"


def test_offline_server(fast_config):
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()

    status = asyncio.run(get_unified_status(Endpoint(host="127.0.0.1", port=port)))

    assert status.online is False
    assert status.error
    assert status.latency is None
    assert status.modpack is not None
    assert status.modpack.name == "ATM10"


def test_unencodable_host_is_offline(fast_config):
    status = asyncio.run(get_unified_status(Endpoint(host="a" * 64 + ".example.com")))

    assert status.online is False
    assert status.error
    assert status.host == "a" * 64 + ".example.com"
