import asyncio

import dns.exception
import pytest

from nonebot_plugin_mcdash import latency
from nonebot_plugin_mcdash.latency import LatencyPolicy, estimate, is_private_address, measure
from nonebot_plugin_mcdash.models import Endpoint, LatencyMeasurement

TARGET = Endpoint(host="mc.example.com", port=25565)
PUBLIC_ADDRESS = "93.184.216.34"


def connect_times(times: dict[str, float], default: float = 40.0):
    def tcp_connect_time(host: str, port: int, timeout: float) -> float:
        value = times.get(host, default)
        if value is None:
            raise ConnectionRefusedError(f"{host}:{port} refused")
        return value

    return tcp_connect_time


async def icmp_unavailable(host: str, timeout: float) -> float:
    raise OSError("ping not installed")


async def resolve_fails(hostname: str, nameserver: str, timeout: float) -> list[str]:
    raise dns.exception.Timeout()


@pytest.fixture
def offline_icmp_and_dns(monkeypatch):
    monkeypatch.setattr(latency, "icmp_ping", icmp_unavailable)
    monkeypatch.setattr(latency, "resolve_a", resolve_fails)


def test_internal_routing_is_corrected(monkeypatch, offline_icmp_and_dns):
    monkeypatch.setattr(latency, "tcp_connect_time", connect_times({TARGET.host: 3.0}))

    measurement = asyncio.run(estimate(TARGET, timeout=1))

    assert measurement is not None
    assert measurement.value_ms == 38
    assert measurement.method == "external_reference"
    assert measurement.confidence_level == "medium"
    assert [s.method for s in measurement.strategies] == ["external_reference"]


def test_no_correction_when_references_are_close(monkeypatch, offline_icmp_and_dns):
    monkeypatch.setattr(
        latency, "tcp_connect_time", connect_times({TARGET.host: 3.0}, default=12.0)
    )

    measurement = asyncio.run(estimate(TARGET, timeout=1))

    assert measurement is not None
    assert measurement.value_ms == 3
    assert measurement.confidence_level == "low"
    assert measurement.suspect is True
    assert measurement.warning == "internal_routing"


def test_all_strategies_fail(monkeypatch, offline_icmp_and_dns):
    monkeypatch.setattr(latency, "tcp_connect_time", connect_times({}, default=None))  # type: ignore

    assert asyncio.run(estimate(TARGET, timeout=1)) is None


def test_multiple_strategies_flag_public_internal_route(monkeypatch):
    async def resolve(hostname: str, nameserver: str, timeout: float) -> list[str]:
        return [PUBLIC_ADDRESS]

    async def icmp(host: str, timeout: float) -> float:
        return 45.0

    monkeypatch.setattr(
        latency,
        "tcp_connect_time",
        connect_times({TARGET.host: 3.0, PUBLIC_ADDRESS: 2.0}),
    )
    monkeypatch.setattr(latency, "icmp_ping", icmp)
    monkeypatch.setattr(latency, "resolve_a", resolve)

    measurement = asyncio.run(estimate(TARGET, timeout=1))

    assert measurement is not None
    assert measurement.method == "multi-strategy"
    assert {s.method: s.latency_ms for s in measurement.strategies} == {
        "external_reference": 38,
        "icmp": 45,
        "multiple_dns": 2,
    }
    assert measurement.value_ms == 38
    assert measurement.confidence_level == "high"
    assert measurement.suspect is True


def test_icmp_drops_internal_results(monkeypatch):
    async def icmp(host: str, timeout: float) -> float:
        return 0.5

    monkeypatch.setattr(latency, "icmp_ping", icmp)

    outcome = asyncio.run(latency.measure_icmp(1, LatencyPolicy()))
    assert outcome.latency_ms is None


def test_ip_target_skips_dns(monkeypatch):
    target = Endpoint(host="192.168.1.10", port=25565)
    monkeypatch.setattr(latency, "tcp_connect_time", connect_times({}, default=25.0))
    monkeypatch.setattr(latency, "resolve_a", resolve_fails)

    outcome = asyncio.run(latency.measure_multiple_dns(target, 1, LatencyPolicy()))
    assert outcome.latency_ms == 25
    assert outcome.target_addresses == ("192.168.1.10",)


def test_is_private_address():
    assert is_private_address("127.0.0.1")
    assert is_private_address("10.1.2.3")
    assert is_private_address("fe80::1")
    assert not is_private_address(PUBLIC_ADDRESS)


def test_correction_at_reference_floor(monkeypatch, offline_icmp_and_dns):
    monkeypatch.setattr(
        latency, "tcp_connect_time", connect_times({TARGET.host: 3.0}, default=15.0)
    )

    measurement = asyncio.run(estimate(TARGET, timeout=1))

    assert measurement is not None
    assert measurement.value_ms == 14
    assert measurement.confidence_level == "medium"
    assert measurement.suspect is False


def test_measure_prefers_multi_strategy(monkeypatch, offline_icmp_and_dns):
    monkeypatch.setattr(latency, "tcp_connect_time", connect_times({TARGET.host: 3.0}))

    measurement = asyncio.run(measure(TARGET, timeout=1))

    assert measurement is not None
    assert measurement.value_ms == 38
    assert measurement.method == "external_reference"


def test_measure_falls_back_to_direct(monkeypatch, offline_icmp_and_dns):
    # no external reference answers, only the target itself
    monkeypatch.setattr(
        latency, "tcp_connect_time", connect_times({TARGET.host: 0.3}, default=None)  # type: ignore
    )

    measurement = asyncio.run(measure(TARGET, timeout=1))

    assert measurement is not None
    assert measurement.method == "direct"
    assert measurement.value_ms == 1
    assert measurement.confidence_level == "low"
    assert measurement.suspect is True
    assert measurement.warning == "internal_routing"


def test_measure_direct_replaces_low_multi_strategy(monkeypatch):
    async def low_multi_strategy(target, timeout, policy):
        return LatencyMeasurement(
            value_ms=3, method="external_reference", confidence_level="low", suspect=True
        )

    monkeypatch.setattr(latency, "estimate", low_multi_strategy)
    monkeypatch.setattr(latency, "tcp_connect_time", connect_times({TARGET.host: 42.0}))

    measurement = asyncio.run(measure(TARGET, timeout=1))

    assert measurement is not None
    assert measurement.method == "direct"
    assert measurement.value_ms == 42
    assert measurement.confidence_level == "medium"
    assert measurement.suspect is False


def test_measure_all_fail(monkeypatch, offline_icmp_and_dns):
    monkeypatch.setattr(latency, "tcp_connect_time", connect_times({}, default=None))  # type: ignore

    assert asyncio.run(measure(TARGET, timeout=1)) is None
