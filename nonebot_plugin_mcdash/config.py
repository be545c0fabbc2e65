from nonebot.plugin import get_plugin_config
from pydantic import BaseModel, Field

from .latency import DEFAULT_DNS_SERVERS, DEFAULT_ICMP_HOSTS, DEFAULT_REFERENCE_SERVERS
from .models import Endpoint


class ScopedConfig(BaseModel):
    language: str = Field(default="zh-cn")
    """插件回复所使用的语言"""
    server_host: str = Field(default="localhost")
    """默认查询的 Minecraft 服务器地址"""
    server_port: int = Field(default=25565, ge=0, le=65535)
    """SLP（TCP）端口"""
    query_port: int = Field(default=25565, ge=0, le=65535)
    """Query（UDP）端口，通常与游戏端口相同"""
    query_hosts: list[str] = Field(default_factory=lambda: ["127.0.0.1", "localhost"])
    """服务器地址之后依次尝试的 Query 备用地址"""
    protocol_version: int = Field(default=127)
    """握手包中的协议版本"""
    status_timeout: float = Field(default=10)
    """SLP 会话超时（秒）"""
    query_timeout: float = Field(default=5)
    """每个 Query 候选地址的超时（秒）"""
    latency_timeout: float = Field(default=5)
    """延迟测量中单次连接的超时（秒）"""
    modpack_config_path: str | None = Field(default=None)
    """整合包 TOML 配置文件路径，例如 `config/bcc-common.toml`"""
    reference_servers: list[Endpoint] = Field(
        default_factory=lambda: list(DEFAULT_REFERENCE_SERVERS)
    )
    """外部基准服务器"""
    icmp_hosts: list[str] = Field(default_factory=lambda: list(DEFAULT_ICMP_HOSTS))
    """ICMP ping 目标"""
    dns_servers: list[str] = Field(default_factory=lambda: list(DEFAULT_DNS_SERVERS))
    """用于独立解析目标地址的外部 DNS"""
    internal_latency_ms: float = Field(default=10)
    """低于该值的测量视为可能的内部路由"""
    reference_floor_ms: float = Field(default=15)
    """外部基准不低于该值时才修正内部路由"""
    internal_damping: float = Field(default=0.95)
    """内部路由时按外部基准估算的系数"""


class Config(BaseModel):
    mcdash: ScopedConfig = Field(default_factory=ScopedConfig)
    """MCDash Config"""


config: ScopedConfig = get_plugin_config(Config).mcdash
