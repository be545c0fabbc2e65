from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class Endpoint(BaseModel):
    """TCP 或 UDP 目标地址"""

    model_config = ConfigDict(frozen=True)

    host: str
    port: int = Field(default=25565, ge=0, le=65535)

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


class Player(BaseModel):
    """带 UUID 的玩家记录，来自 SLP 状态响应的 `players.sample`"""

    name: str
    uuid: str


PlayerRef = Player | str
"""玩家引用：带 UUID 的记录，或仅有名字的字符串"""


class ModInfo(BaseModel):
    id: str = "unknown"
    version: str = "unknown"


class ModpackInfo(BaseModel):
    type: str = "Unknown"
    name: str | None = None
    version: str | None = None
    project_id: str | int | None = None
    mod_count: int | None = None
    mods: list[ModInfo] = Field(default_factory=list)


class ModpackOverride(BaseModel):
    """外部 TOML 文件提供的整合包信息，所有字段均可缺省"""

    name: str | None = None
    version: str | None = None
    project_id: str | int | None = None


class StatusResponse(BaseModel):
    """解析后的 SLP 状态响应"""

    version_name: str = "Unknown"
    protocol_version: int | None = None
    players_online: int = 0
    players_max: int = 0
    player_sample: list[PlayerRef] = Field(default_factory=list)
    description: str | None = None
    """当天消息，保留格式代码"""
    stripped_description: str | None = None
    """当天消息，已去除所有格式"""
    favicon: str | None = None
    """`data:image/png;base64,...` 形式的图标"""
    modpack: ModpackInfo | None = None
    is_modded: bool = False
    prevents_chat_reports: bool = False


class QueryResponse(BaseModel):
    """解析后的 Query 完整状态响应"""

    hostname: str | None = None
    gametype: str | None = None
    game_id: str | None = None
    version: str | None = None
    map: str | None = None
    num_players: int = 0
    max_players: int = 0
    player_names: list[str] = Field(default_factory=list)
    plugins: list[str] | None = None
    software_name: str | None = None
    host_ip: str | None = None
    host_port: int | None = None


class QueryInfo(BaseModel):
    """附加在统一状态上的 Query 信息块，不覆盖主字段"""

    map: str | None = None
    plugins: str | None = None
    gametype: str | None = None
    software: str | None = None
    hostname: str | None = None
    hostport: int | None = None


class Players(BaseModel):
    online: int = 0
    max: int = 0
    sample: list[PlayerRef] = Field(default_factory=list)
    full_list: list[str] | None = None


class UnifiedStatus(BaseModel):
    """单次状态请求的合并结果，每次请求重新构造，不做缓存"""

    online: bool
    error: str | None = None
    host: str | None = None
    port: int | None = None
    version: str | None = None
    protocol_version: int | None = None
    players: Players = Field(default_factory=Players)
    description: str | None = None
    stripped_description: str | None = None
    favicon: str | None = None
    latency: int | None = None
    """Ping/Pong 往返时间（毫秒），无法测量时为 `None`"""
    modpack: ModpackInfo | None = None
    is_modded: bool = False
    prevents_chat_reports: bool = False
    query: QueryInfo | None = None


class StrategyResult(BaseModel):
    method: str
    latency_ms: int


class LatencyMeasurement(BaseModel):
    value_ms: int
    method: str
    confidence_level: Literal["high", "medium", "low"]
    suspect: bool = False
    """测量值可能来自内部路由，不可直接信任"""
    warning: str | None = None
    strategies: list[StrategyResult] = Field(default_factory=list)
