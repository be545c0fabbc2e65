from .models import (
    ModpackInfo,
    ModpackOverride,
    Player,
    PlayerRef,
    Players,
    QueryInfo,
    QueryResponse,
    StatusResponse,
    UnifiedStatus,
)


def normalize_name(name: str) -> str:
    return str(name).lower().strip()


def merge_players(sample: list[PlayerRef], names: list[str]) -> list[PlayerRef]:
    """
    以 Query 的玩家列表为准，尽可能保留 SLP 样本中的 UUID。

    :param sample: SLP 状态响应中的玩家样本
    :param names: Query 返回的完整玩家名列表

    :returns: 与 `names` 等长的列表，能按名字（忽略大小写与首尾空白）匹配到
        UUID 记录的位置使用该记录，其余保持为名字
    """
    lookup = {
        normalize_name(player.name): player
        for player in sample
        if isinstance(player, Player)
    }
    return [lookup.get(normalize_name(name), name) for name in names]


def merge_modpack(
    protocol: ModpackInfo | None, override: ModpackOverride | None
) -> ModpackInfo | None:
    """
    合并协议推断的整合包信息与 TOML 配置。

    TOML 中存在的 name / version / project_id 优先，缺省时回退到协议值；
    协议没有整合包信息但 TOML 给出了名字时，构造一条最小记录。
    """
    if override is None:
        return protocol

    if protocol is not None:
        return protocol.model_copy(
            update={
                "name": override.name or protocol.name,
                "version": override.version or protocol.version,
                "project_id": override.project_id or protocol.project_id,
            }
        )

    if override.name:
        return ModpackInfo(
            type="Unknown",
            name=override.name,
            version=override.version,
            project_id=override.project_id,
            mod_count=None,
            mods=[],
        )
    return None


def build_query_info(query: QueryResponse) -> QueryInfo:
    return QueryInfo(
        map=query.map,
        plugins=", ".join(query.plugins) if query.plugins else None,
        gametype=query.software_name or query.gametype,
        software=query.software_name,
        hostname=query.host_ip or query.hostname,
        hostport=query.host_port,
    )


def reconcile(
    status: StatusResponse,
    query: QueryResponse | None = None,
    modpack_override: ModpackOverride | None = None,
    *,
    host: str | None = None,
    port: int | None = None,
    latency: int | None = None,
) -> UnifiedStatus:
    """
    合并 SLP 状态、Query 结果与整合包配置。

    SLP 的版本、描述、图标等主字段不会被 Query 覆盖，
    Query 的地图、插件等信息放在独立的 `query` 块中。

    :param status: SLP 状态响应
    :param query: Query 结果，获取失败时为 `None`
    :param modpack_override: TOML 整合包配置
    :param host: 查询的地址
    :param port: 查询的端口
    :param latency: SLP Ping 延迟（毫秒）
    """
    players = Players(
        online=status.players_online,
        max=status.players_max,
        sample=list(status.player_sample),
    )

    query_info = None
    if query is not None:
        if query.player_names:
            players.sample = merge_players(status.player_sample, query.player_names)
            players.full_list = list(query.player_names)
        query_info = build_query_info(query)

    return UnifiedStatus(
        online=True,
        host=host,
        port=port,
        version=status.version_name,
        protocol_version=status.protocol_version,
        players=players,
        description=status.description,
        stripped_description=status.stripped_description,
        favicon=status.favicon,
        latency=latency,
        modpack=merge_modpack(status.modpack, modpack_override),
        is_modded=status.is_modded,
        prevents_chat_reports=status.prevents_chat_reports,
        query=query_info,
    )


def offline_status(
    error: str,
    modpack_override: ModpackOverride | None = None,
    *,
    host: str | None = None,
    port: int | None = None,
) -> UnifiedStatus:
    """构造离线状态，仍附带 TOML 中的整合包信息"""
    return UnifiedStatus(
        online=False,
        error=error,
        host=host,
        port=port,
        modpack=merge_modpack(None, modpack_override),
    )
