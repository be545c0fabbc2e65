"""
多策略延迟测量

在与 Minecraft 服务器同机或同机房运行时，直接测得的 TCP 连接时间往往走的是内部路由，
远低于外部玩家实际看到的延迟。这里同时运行三种策略并取中位数：

1. external_reference：对一组公共服务器计时作为外部基准，再对目标计时，
   目标明显快于基准时判定为内部路由，按基准估算
2. icmp：对公共主机执行系统 ping，丢弃过低（疑似内部）的结果
3. multiple_dns：通过多个外部 DNS 解析目标地址，分别计时
"""

import asyncio
import ipaddress
import re
import socket
from statistics import median_high
from time import perf_counter
from typing import NamedTuple

import dns.asyncresolver
import dns.exception
from nonebot import logger
from pydantic import BaseModel, Field

from .models import Endpoint, LatencyMeasurement, StrategyResult

DEFAULT_TIMEOUT = 5
"""单次连接的默认超时时间（秒）"""

DEFAULT_REFERENCE_SERVERS = [
    Endpoint(host="8.8.8.8", port=53),  # Google DNS
    Endpoint(host="1.1.1.1", port=53),  # Cloudflare DNS
    Endpoint(host="1.1.1.2", port=53),  # Cloudflare DNS (malware blocking)
    Endpoint(host="140.82.121.4", port=443),  # GitHub
    Endpoint(host="142.250.185.14", port=443),  # Google
]
DEFAULT_ICMP_HOSTS = ["8.8.8.8", "1.1.1.1", "google.com", "github.com"]
DEFAULT_DNS_SERVERS = ["8.8.8.8", "1.1.1.1", "208.67.222.222"]

PING_TIME_PATTERN = re.compile(r"time[<=](\d+\.?\d*)\s*ms")


class LatencyPolicy(BaseModel):
    reference_servers: list[Endpoint] = Field(
        default_factory=lambda: list(DEFAULT_REFERENCE_SERVERS)
    )
    icmp_hosts: list[str] = Field(default_factory=lambda: list(DEFAULT_ICMP_HOSTS))
    dns_servers: list[str] = Field(default_factory=lambda: list(DEFAULT_DNS_SERVERS))
    internal_latency_ms: float = 10
    """低于该值的测量视为可能的内部路由"""
    reference_floor_ms: float = 15
    """外部基准不低于该值时，才用基准修正内部路由的目标测量"""
    internal_damping: float = 0.95
    """内部路由时，报告值 = 外部基准中位数 × 该系数"""


class StrategyOutcome(NamedTuple):
    latency_ms: int | None
    target_samples: tuple[float, ...] = ()
    """对目标的原始连接耗时"""
    target_addresses: tuple[str, ...] = ()
    """独立解析得到的目标地址"""


def is_ip_address(address: str) -> bool:
    try:
        ipaddress.ip_address(address)
    except ValueError:
        return False
    return True


def is_private_address(address: str) -> bool:
    """判断地址是否属于私有、回环或链路本地范围"""
    ip = ipaddress.ip_address(address)
    return ip.is_private or ip.is_loopback or ip.is_link_local


def tcp_connect_time(host: str, port: int, timeout: float) -> float:
    """测量建立 TCP 连接的耗时（毫秒），连接建立后立即关闭"""
    start_time = perf_counter()
    with socket.create_connection((host, port), timeout=timeout):
        elapsed_time = perf_counter() - start_time
    return elapsed_time * 1000


async def icmp_ping(host: str, timeout: float) -> float:
    """调用系统 `ping` 命令测量一次 ICMP 往返时间（毫秒）"""
    process = await asyncio.create_subprocess_exec(
        "ping",
        "-c",
        "1",
        "-W",
        str(max(1, int(timeout))),
        host,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.DEVNULL,
    )
    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout + 1)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise TimeoutError(f"ping {host} timed out") from None

    if match := PING_TIME_PATTERN.search(stdout.decode(errors="replace")):
        return float(match[1])
    raise OSError(f"no reply from {host}")


async def resolve_a(hostname: str, nameserver: str, timeout: float) -> list[str]:
    """通过指定的 DNS 服务器解析 A 记录，绕过本机 hosts 与本地 DNS"""
    resolver = dns.asyncresolver.Resolver(configure=False)
    resolver.nameservers = [nameserver]
    resolver.lifetime = timeout
    answer = await resolver.resolve(hostname, "A")
    return [str(rdata.address) for rdata in answer]  # type: ignore


async def _timed_connect(host: str, port: int, timeout: float) -> float | None:
    try:
        return await asyncio.to_thread(tcp_connect_time, host, port, timeout)
    except OSError as e:
        logger.debug(f"[Latency] connect {host}:{port} failed: {e!r}")
        return None


async def _timed_icmp(host: str, timeout: float) -> float | None:
    try:
        return await icmp_ping(host, timeout)
    except OSError as e:
        logger.debug(f"[Latency-ICMP] {host} failed: {e!r}")
        return None


async def measure_external_reference(
    target: Endpoint, timeout: float, policy: LatencyPolicy
) -> StrategyOutcome:
    """策略 1：外部基准对比，可识别内部路由"""
    results = await asyncio.gather(
        *(_timed_connect(ref.host, ref.port, timeout) for ref in policy.reference_servers)
    )
    measurements = [r for r in results if r is not None]
    if not measurements:
        logger.info("[Latency-Ref] No external reference servers responded")
        return StrategyOutcome(None)

    external = [m for m in measurements if m >= policy.internal_latency_ms]
    if not external:
        logger.warning(
            "[Latency-Ref] All reference servers are very close "
            f"(<{policy.internal_latency_ms}ms), likely in the same datacenter"
        )
        return StrategyOutcome(None)

    reference = median_high(external)

    target_ms = await _timed_connect(target.host, target.port, timeout)
    if target_ms is None:
        return StrategyOutcome(None)

    logger.debug(
        f"[Latency-Ref] {target} tcp connect {target_ms:.1f}ms, "
        f"external median {reference:.1f}ms"
    )
    if target_ms < policy.internal_latency_ms and reference >= policy.reference_floor_ms:
        estimated = round(reference * policy.internal_damping)
        logger.info(
            f"[Latency-Ref] Detected internal routing ({target_ms:.1f}ms vs "
            f"external median {reference:.1f}ms), estimated {estimated}ms"
        )
        return StrategyOutcome(estimated, (target_ms,))

    return StrategyOutcome(round(target_ms), (target_ms,))


async def measure_icmp(timeout: float, policy: LatencyPolicy) -> StrategyOutcome:
    """策略 2：ICMP ping 公共主机，需要系统 ping 命令"""
    results = await asyncio.gather(*(_timed_icmp(host, timeout) for host in policy.icmp_hosts))
    external = [r for r in results if r is not None and r >= policy.internal_latency_ms]
    if not external:
        return StrategyOutcome(None)
    return StrategyOutcome(round(median_high(external)))


async def measure_multiple_dns(
    target: Endpoint, timeout: float, policy: LatencyPolicy
) -> StrategyOutcome:
    """策略 3：经多个外部 DNS 解析目标后分别计时"""
    if is_ip_address(target.host):
        sample = await _timed_connect(target.host, target.port, timeout)
        return StrategyOutcome(
            round(sample) if sample is not None else None,
            (sample,) if sample is not None else (),
            (target.host,),
        )

    async def probe(nameserver: str) -> tuple[str | None, float | None]:
        try:
            addresses = await resolve_a(target.host, nameserver, timeout)
        except dns.exception.DNSException as e:
            logger.debug(f"[Latency-DNS] resolve {target.host} via {nameserver} failed: {e!r}")
            return None, None
        if not addresses:
            return None, None
        return addresses[0], await _timed_connect(addresses[0], target.port, timeout)

    results = await asyncio.gather(*(probe(ns) for ns in policy.dns_servers))
    addresses = [address for address, _ in results if address is not None]
    samples = [sample for _, sample in results if sample is not None]
    if not samples:
        return StrategyOutcome(None, (), tuple(addresses))
    return StrategyOutcome(round(median_high(samples)), tuple(samples), tuple(addresses))


async def estimate(
    target: Endpoint,
    timeout: float = DEFAULT_TIMEOUT,
    policy: LatencyPolicy | None = None,
) -> LatencyMeasurement | None:
    """
    并发运行全部策略，取成功策略结果的中位数。

    :params target: 目标服务器
    :params timeout: 单次连接的超时时间（秒）
    :params policy: 阈值与参考服务器配置

    :returns: 延迟测量结果，全部策略失败时为 `None`
    """
    policy = policy or LatencyPolicy()
    names = ("external_reference", "icmp", "multiple_dns")
    outcomes = await asyncio.gather(
        measure_external_reference(target, timeout, policy),
        measure_icmp(timeout, policy),
        measure_multiple_dns(target, timeout, policy),
    )

    successes = [
        StrategyResult(method=name, latency_ms=outcome.latency_ms)
        for name, outcome in zip(names, outcomes)
        if outcome.latency_ms is not None and outcome.latency_ms > 0
    ]
    for name, outcome in zip(names, outcomes):
        logger.debug(f"[Latency-Multi] {name}: {outcome.latency_ms}")
    if not successes:
        logger.warning(f"[Latency-Multi] All strategies failed for {target}")
        return None

    value = median_high([s.latency_ms for s in successes])

    public_target = any(
        not is_private_address(address)
        for outcome in outcomes
        for address in outcome.target_addresses
    )
    raw_internal = any(
        sample < policy.internal_latency_ms
        for outcome in outcomes
        for sample in outcome.target_samples
    )
    too_low = value < policy.internal_latency_ms
    suspect = too_low or (public_target and raw_internal)
    if suspect:
        logger.warning(
            f"[Latency-Multi] Very low latency to {target} detected, "
            "this likely indicates internal routing"
        )

    if len(successes) >= 2:
        confidence = "high"
    else:
        confidence = "low" if too_low else "medium"

    return LatencyMeasurement(
        value_ms=value,
        method=successes[0].method if len(successes) == 1 else "multi-strategy",
        confidence_level=confidence,
        suspect=suspect,
        warning="internal_routing" if suspect else None,
        strategies=successes,
    )


async def measure(
    target: Endpoint,
    timeout: float = DEFAULT_TIMEOUT,
    policy: LatencyPolicy | None = None,
) -> LatencyMeasurement | None:
    """
    多策略估算与直接 TCP 连接测量同时进行，择优返回。

    多策略结果不低于内部路由阈值时直接采用；否则若直接测量不低于阈值，改用直接测量；
    两者都偏低时保留多策略结果。多策略全部失败时回退到直接测量，
    低于阈值的直接测量会被标记为内部路由。

    :params target: 目标服务器
    :params timeout: 单次连接的超时时间（秒）
    :params policy: 阈值与参考服务器配置

    :returns: 延迟测量结果，所有方法都失败时为 `None`
    """
    policy = policy or LatencyPolicy()
    multi, direct_ms = await asyncio.gather(
        estimate(target, timeout, policy),
        _timed_connect(target.host, target.port, timeout),
    )
    if direct_ms is not None:
        logger.debug(f"[Latency] direct measurement to {target}: {direct_ms:.1f}ms")

    if multi is not None and (
        multi.value_ms >= policy.internal_latency_ms
        or direct_ms is None
        or direct_ms < policy.internal_latency_ms
    ):
        return multi

    if direct_ms is None:
        logger.warning(f"[Latency] All measurement methods failed for {target}")
        return None

    # sub-millisecond loopback connects still count as a measurement
    value = max(1, round(direct_ms))
    internal = value < policy.internal_latency_ms
    if internal:
        logger.warning(
            f"[Latency] Very low direct latency ({value}ms) to {target}, "
            "this likely indicates internal routing"
        )
    return LatencyMeasurement(
        value_ms=value,
        method="direct",
        confidence_level="low" if internal else "medium",
        suspect=internal,
        warning="internal_routing" if internal else None,
        strategies=[StrategyResult(method="direct", latency_ms=value)],
    )
