# minestat.py - A Minecraft server status checker
# Copyright (C) 2016-2023 Lloyd Dilley, Felix Ern (MindSolve)
# http://www.dilley.me/
#
# This program is free software; you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation; either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License along
# with this program; if not, write to the Free Software Foundation, Inc.,
# 51 Franklin Street, Fifth Floor, Boston, MA 02110-1301 USA.
#
# 本文件由 @molanp 进行优化与需求定制
#
# 由于 wiki.vg 站点已关闭，现在你可以在
# https://minecraft.wiki/w/Minecraft_Wiki:Projects/wiki.vg_merge#Project_pages
# 找到原始内容的副本

"""
Query / GameSpot4 / UT3 协议（UDP）

需要在 Minecraft 服务器的 "server.properties" 中开启：

`enable-query=true`

仅实现完整状态（full stat）查询，协议流程：
  发送握手请求 -> 收到 challenge token -> 发送 full stat 请求 -> 收到状态数据

详见 https://minecraft.wiki/w/Query
"""

from collections.abc import Iterable
from enum import Enum
import random
import socket
import struct
from time import perf_counter

from nonebot import logger

from .exceptions import ProtocolError, ProtocolErrorKind
from .models import QueryResponse

DEFAULT_TIMEOUT = 5
"""每次尝试的默认超时时间（秒）"""

MAGIC = b"\xfe\xfd"
"""padding that is prefixed to every client packet"""
HANDSHAKE_TYPE = 9
STAT_TYPE = 0
SESSION_ID_MASK = 0x0F0F0F0F
"""服务器只回显每个字节的低 4 位"""
FULL_STAT_HEADER_LENGTH = 16
"""type (1) + session id (4) + `splitnum\\x00\\x80\\x00` (11)"""
PLAYER_SECTION = b"\x01player_\x00\x00"


class QueryState(Enum):
    def __str__(self) -> str:
        return str(self.name)

    AWAIT_HANDSHAKE = 0
    AWAIT_FULL_STATS = 1
    DONE = 2
    FAILED = 3


def _malformed(message: str) -> ProtocolError:
    return ProtocolError(ProtocolErrorKind.MALFORMED_QUERY_RESPONSE, message)


def _read_cstring(data: bytes, offset: int) -> tuple[bytes, int]:
    end = data.find(b"\x00", offset)
    if end == -1:
        raise _malformed(f"missing NUL terminator after offset {offset}")
    return data[offset:end], end + 1


def _as_int(value: bytes | None) -> int | None:
    try:
        return int(value) if value else None
    except ValueError:
        return None


class QuerySession:
    def __init__(self, session_id: int | None = None) -> None:
        """
        单次 Query 会话的状态机

        :param session_id: 会话 ID，默认随机生成
        """
        if session_id is None:
            session_id = random.randint(0, 0x7FFFFFFF) & SESSION_ID_MASK
        self.session_id: int = session_id
        self.state = QueryState.AWAIT_HANDSHAKE
        self.challenge_token: bytes | None = None
        self.response: QueryResponse | None = None

    def handshake_packet(self) -> bytes:
        # magic, packet type (9 for handshaking), session id, one byte of padding
        return (
            MAGIC
            + struct.pack("!B", HANDSHAKE_TYPE)
            + struct.pack(">l", self.session_id)
            + b"\x00"
        )

    def full_stat_packet(self) -> bytes:
        if self.challenge_token is None:
            raise RuntimeError("no challenge token yet")
        # magic, packet type (0 for stat), session id, challenge token,
        # and 4 bytes of padding that turn a basic stat request into a full one
        return (
            MAGIC
            + struct.pack("!B", STAT_TYPE)
            + struct.pack(">l", self.session_id)
            + self.challenge_token
            + b"\x00\x00\x00\x00"
        )

    def feed(self, datagram: bytes) -> bytes | None:
        """
        处理收到的数据报。

        :param datagram: 服务器发来的数据报

        :returns: 握手完成后需要发送的 full stat 请求，状态数据解析完成后为 `None`
        """
        if self.state not in (QueryState.AWAIT_HANDSHAKE, QueryState.AWAIT_FULL_STATS):
            raise RuntimeError(f"cannot feed datagram in state {self.state}")

        try:
            if self.state is QueryState.AWAIT_HANDSHAKE:
                self._check_header(datagram, HANDSHAKE_TYPE)
                self.challenge_token = self._parse_challenge(datagram)
                self.state = QueryState.AWAIT_FULL_STATS
                return self.full_stat_packet()

            self._check_header(datagram, STAT_TYPE)
            self.response = parse_full_stat(datagram)
            self.state = QueryState.DONE
            return None
        except Exception:
            self.state = QueryState.FAILED
            raise

    def _check_header(self, datagram: bytes, expected_type: int) -> None:
        if len(datagram) < 5:
            raise _malformed(f"datagram too short ({len(datagram)} bytes)")

        received_id = struct.unpack(">l", datagram[1:5])[0]
        if received_id != self.session_id:
            raise ProtocolError(
                ProtocolErrorKind.SESSION_MISMATCH,
                f"expected session {self.session_id:#010x}, got {received_id:#010x}",
            )
        if datagram[0] != expected_type:
            raise ProtocolError(
                ProtocolErrorKind.UNEXPECTED_PACKET,
                f"expected type {expected_type}, got {datagram[0]}",
            )

    @staticmethod
    def _parse_challenge(datagram: bytes) -> bytes:
        # the token is sent as a NUL-terminated decimal string
        raw_token, _ = _read_cstring(datagram, 5)
        try:
            token = int(raw_token)
        except ValueError as e:
            raise _malformed(f"invalid challenge token {raw_token!r}") from e
        # pack the challenge token into a big-endian int32
        return struct.pack(">L", token & 0xFFFFFFFF)


def parse_full_stat(datagram: bytes) -> QueryResponse:
    """
    解析 full stat 响应（包含 16 字节头部）。

    此实现会解析 K/V 段中的常用字段与玩家列表。
    """
    if len(datagram) < FULL_STAT_HEADER_LENGTH:
        raise _malformed(f"datagram too short ({len(datagram)} bytes)")

    offset = FULL_STAT_HEADER_LENGTH
    stats: dict[str, bytes] = {}
    while True:
        key, offset = _read_cstring(datagram, offset)
        if not key:
            break
        value, offset = _read_cstring(datagram, offset)
        stats[key.decode("utf-8", errors="replace")] = value

    if datagram.startswith(PLAYER_SECTION, offset):
        offset += len(PLAYER_SECTION)
    elif offset < len(datagram) and datagram[offset] == 0:
        offset += 1
    else:
        raise _malformed(f"missing player section at offset {offset}")

    players: list[str] = []
    while True:
        name, offset = _read_cstring(datagram, offset)
        if not name:
            break
        players.append(name.decode("utf-8", errors="replace"))

    def text(key: str) -> str | None:
        value = stats.get(key)
        return value.decode("utf-8", errors="replace") if value else None

    plugins: list[str] | None = None
    software_name: str | None = None
    if raw_plugins := text("plugins"):
        # example: "Paper on 1.19.3: AnExampleMod 7.3; AnotherExampleMod 4.2"
        if ":" in raw_plugins:
            software_name, raw_plugins = (part.strip() for part in raw_plugins.split(":", 1))
        plugins = [p.strip() for p in raw_plugins.split(";") if p.strip()] or None

    # the hostname is the motd, sent as latin-1
    hostname = stats.get("hostname")

    return QueryResponse(
        hostname=hostname.decode("iso_8859_1") if hostname else None,
        gametype=text("gametype"),
        game_id=text("game_id"),
        version=text("version"),
        map=text("map"),
        num_players=_as_int(stats.get("numplayers")) or 0,
        max_players=_as_int(stats.get("maxplayers")) or 0,
        player_names=players,
        plugins=plugins,
        software_name=software_name or None,
        host_ip=text("hostip"),
        host_port=_as_int(stats.get("hostport")),
    )


def _recv(sock: socket.socket, deadline: float) -> bytes:
    remaining = deadline - perf_counter()
    if remaining <= 0:
        raise TimeoutError("query session timed out")
    sock.settimeout(remaining)
    return sock.recv(65535)


def full_stat_query(host: str, port: int, timeout: float = DEFAULT_TIMEOUT) -> QueryResponse:
    """
    对单个地址执行一次 Query 完整状态查询。

    :params host: 服务器地址
    :params port: Query 端口
    :params timeout: 本次尝试的超时时间（秒）

    :raises TimeoutError: 会话超时
    :raises ProtocolError: 响应不符合协议
    :raises OSError: 地址无法解析或端口不可达
    """
    deadline = perf_counter() + timeout
    session = QuerySession()

    family, _, _, _, address = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)[0]
    sock = socket.socket(family, socket.SOCK_DGRAM)
    try:
        # connected UDP socket, datagrams from other peers are dropped by the kernel
        sock.connect(address)
        sock.send(session.handshake_packet())

        request = session.feed(_recv(sock, deadline))
        sock.send(request)  # type: ignore

        session.feed(_recv(sock, deadline))
    finally:
        if session.state is not QueryState.DONE:
            session.state = QueryState.FAILED
        sock.close()

    return session.response  # type: ignore


def query_candidates(
    hosts: Iterable[str], port: int, timeout: float = DEFAULT_TIMEOUT
) -> QueryResponse | None:
    """
    按顺序对候选地址执行 Query，第一个成功的结果即返回，其余候选不再尝试。

    会话 ID 不匹配视为伪造或错投的响应，立即放弃，不再尝试后续候选。

    :params hosts: 候选地址，通常为配置的域名、127.0.0.1、localhost
    :params port: Query 端口
    :params timeout: 每次尝试的超时时间（秒）

    :returns: Query 结果，全部失败时为 `None`
    """
    tried = []
    for host in dict.fromkeys(hosts):
        tried.append(host)
        try:
            response = full_stat_query(host, port, timeout)
        except ProtocolError as e:
            if e.kind is ProtocolErrorKind.SESSION_MISMATCH:
                logger.warning(f"[Query] {host}:{port} session mismatch, giving up: {e}")
                return None
            logger.info(f"[Query] {host}:{port} protocol error: {e}")
        except (OSError, UnicodeError) as e:
            logger.debug(f"[Query] {host}:{port} failed: {e!r}")
        else:
            logger.info(f"[Query] success on {host}:{port}")
            return response

    logger.info(f"[Query] not available - tried: {', '.join(tried)}")
    return None
