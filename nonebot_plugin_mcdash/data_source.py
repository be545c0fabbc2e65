import asyncio

from nonebot import logger

from .config import config
from .latency import LatencyPolicy, measure
from .models import Endpoint, LatencyMeasurement, QueryResponse, StatusResponse, UnifiedStatus
from .modpack import read_modpack_config
from .query import query_candidates
from .reconcile import offline_status, reconcile
from .slp import parse_status_payload, status_ping


def default_endpoint() -> Endpoint:
    return Endpoint(host=config.server_host, port=config.server_port)


def _query_hosts(query_endpoint: Endpoint) -> list[str]:
    # loopback fallbacks only make sense for the server this bot runs next to
    if query_endpoint.host == config.server_host:
        return [query_endpoint.host, *config.query_hosts]
    return [query_endpoint.host]


def _fetch_status(
    host: str, port: int, timeout: float, protocol_version: int
) -> tuple[StatusResponse, int]:
    result = status_ping(host, port, timeout, protocol_version)
    return parse_status_payload(result.status_payload), result.latency_ms


def _describe_error(e: BaseException) -> str:
    return str(e) or e.__class__.__name__


async def get_unified_status(
    endpoint: Endpoint | None = None, query_endpoint: Endpoint | None = None
) -> UnifiedStatus:
    """
    获取服务器的统一状态。

    SLP 会话与 Query 会话并发运行，二者都结束（完成或超时）后再合并。
    SLP 失败时返回 `online=False` 的状态；Query 失败只会丢失附加信息。

    :params endpoint: SLP 地址，默认使用配置
    :params query_endpoint: Query 地址，默认与 SLP 同主机，端口取配置的 query_port

    :returns: 统一状态，SLP 会话中的任何异常都转为离线状态，不会抛出
    """
    endpoint = endpoint or default_endpoint()
    if query_endpoint is None:
        query_port = config.query_port if endpoint == default_endpoint() else endpoint.port
        query_endpoint = Endpoint(host=endpoint.host, port=query_port)

    modpack_override = read_modpack_config(config.modpack_config_path)

    status_result, query_result = await asyncio.gather(
        asyncio.to_thread(
            _fetch_status,
            endpoint.host,
            endpoint.port,
            config.status_timeout,
            config.protocol_version,
        ),
        asyncio.to_thread(
            query_candidates,
            _query_hosts(query_endpoint),
            query_endpoint.port,
            config.query_timeout,
        ),
        return_exceptions=True,
    )

    if isinstance(query_result, Exception):
        logger.warning(f"[Status] query enrichment failed: {query_result!r}")
        query_result = None
    elif isinstance(query_result, BaseException):
        raise query_result

    if isinstance(status_result, Exception):
        logger.info(f"[Status] {endpoint} offline: {status_result!r}")
        return offline_status(
            _describe_error(status_result),
            modpack_override,
            host=endpoint.host,
            port=endpoint.port,
        )
    if isinstance(status_result, BaseException):
        raise status_result

    status, latency = status_result  # type: ignore
    query: QueryResponse | None = query_result  # type: ignore

    return reconcile(
        status,
        query,
        modpack_override,
        host=endpoint.host,
        port=endpoint.port,
        latency=latency,
    )


async def get_latency(endpoint: Endpoint | None = None) -> LatencyMeasurement | None:
    """
    估算从外部访问服务器的延迟。

    :params endpoint: 目标地址，默认使用配置

    :returns: 测量结果，多策略与直接测量都失败时为 `None`（而不是 0）
    """
    endpoint = endpoint or default_endpoint()
    policy = LatencyPolicy(
        reference_servers=config.reference_servers,
        icmp_hosts=config.icmp_hosts,
        dns_servers=config.dns_servers,
        internal_latency_ms=config.internal_latency_ms,
        reference_floor_ms=config.reference_floor_ms,
        internal_damping=config.internal_damping,
    )
    return await measure(endpoint, config.latency_timeout, policy)
