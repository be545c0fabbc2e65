import asyncio

from nonebot_plugin_mcdash.models import (
    LatencyMeasurement,
    Player,
    Players,
    QueryInfo,
    StrategyResult,
    UnifiedStatus,
)
from nonebot_plugin_mcdash.utils import (
    build_latency_result,
    build_status_result,
    is_validity_address,
    parse_host,
)


def test_parse_host():
    assert asyncio.run(parse_host("mc.example.com")) == ("mc.example.com", 0)
    assert asyncio.run(parse_host("mc.example.com:25566")) == ("mc.example.com", 25566)
    assert asyncio.run(parse_host("[::1]:25565")) == ("::1", 25565)
    assert asyncio.run(parse_host("127.0.0.1：19132")) == ("127.0.0.1", 19132)


def test_is_validity_address():
    assert is_validity_address("mc.example.com")
    assert is_validity_address("localhost")
    assert is_validity_address("127.0.0.1")
    assert is_validity_address("::1")
    assert not is_validity_address("256.1.1.1")
    assert not is_validity_address("not an address")


def test_build_status_result_online():
    status = UnifiedStatus(
        online=True,
        version="1.21.1",
        protocol_version=767,
        latency=12,
        stripped_description="Hello",
        players=Players(online=2, max=20, sample=[Player(name="Alice", uuid="u1"), "Bob"]),
        query=QueryInfo(map="world", plugins="WorldEdit 7.3"),
    )
    messages = build_status_result(status, "mc.example.com")

    assert len(messages) == 1
    text = messages[0].text  # type: ignore
    assert "1.21.1" in text
    assert "12ms" in text
    assert "Alice, Bob" in text
    assert "WorldEdit 7.3" in text


def test_build_status_result_offline():
    status = UnifiedStatus(online=False, error="Connection refused")
    messages = build_status_result(status, "mc.example.com")

    assert len(messages) == 1
    assert "Connection refused" in messages[0].text  # type: ignore


def test_build_latency_result():
    measurement = LatencyMeasurement(
        value_ms=38,
        method="external_reference",
        confidence_level="medium",
        strategies=[StrategyResult(method="external_reference", latency_ms=38)],
    )
    text = build_latency_result(measurement).text
    assert "38ms" in text
    assert "external_reference" in text
