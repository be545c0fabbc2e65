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
Server List Ping (Minecraft Java >= 1.7)

会话流程：握手 -> 状态请求 -> 状态响应，随后 Ping -> Pong。
`StatusSession` 只负责协议状态与缓冲区，不接触套接字；
`status_ping()` 用阻塞套接字驱动它。

详见 https://minecraft.wiki/w/Java_Edition_protocol/Server_List_Ping
"""

from enum import Enum
import json
import os
import socket
import struct
from time import perf_counter
from typing import Any, NamedTuple

from nonebot import logger

from .codec import MAX_STATUS_LENGTH, pack_packet, pack_string, pack_varint, read_packet, unpack_string
from .exceptions import ProtocolError, ProtocolErrorKind
from .models import Player, PlayerRef, StatusResponse
from .modpack import extract_modpack
from .motd import flatten_description, strip_formatting

DEFAULT_PROTOCOL_VERSION = 127
DEFAULT_TIMEOUT = 10
"""整个会话的默认超时时间（秒）"""

HANDSHAKE_PACKET_ID = 0x00
STATUS_PACKET_ID = 0x00
PING_PACKET_ID = 0x01
NEXT_STATE_STATUS = 1


class SessionState(Enum):
    def __str__(self) -> str:
        return str(self.name)

    CONNECTING = 0
    AWAIT_STATUS = 1
    AWAIT_PONG = 2
    DONE = 3
    FAILED = 4


class StatusPingResult(NamedTuple):
    status_payload: dict[str, Any]
    latency_ms: int


class StatusSession:
    def __init__(
        self,
        host: str,
        port: int,
        protocol_version: int = DEFAULT_PROTOCOL_VERSION,
        payload: bytes | None = None,
    ) -> None:
        """
        单次 SLP 会话的状态机

        :param host: 写入握手包的服务器地址
        :param port: 写入握手包的服务器端口
        :param protocol_version: 握手包中的协议版本
        :param payload: Ping 负载，默认随机生成 8 字节
        """
        self.host = host
        self.port = port
        self.protocol_version = protocol_version
        self.payload: bytes = os.urandom(8) if payload is None else payload
        if len(self.payload) != 8:
            raise ValueError("ping payload must be 8 bytes")

        self.state = SessionState.CONNECTING
        self.buffer = bytearray()
        """尚未解析的接收数据"""
        self.status_payload: dict[str, Any] | None = None
        self.latency_ms: int | None = None
        self.ping_sent_at: float | None = None

    def start(self) -> bytes:
        """返回连接建立后需立即发送的握手包与状态请求包"""
        if self.state is not SessionState.CONNECTING:
            raise RuntimeError(f"session already started ({self.state})")

        handshake = pack_packet(
            HANDSHAKE_PACKET_ID,
            pack_varint(self.protocol_version),
            pack_string(self.host),
            struct.pack(">H", self.port),
            pack_varint(NEXT_STATE_STATUS),
        )
        # empty status request, pipelined right after the handshake
        request = pack_packet(STATUS_PACKET_ID)

        self.state = SessionState.AWAIT_STATUS
        return handshake + request

    def feed(self, data: bytes) -> bytes:
        """
        处理新到达的数据。

        :param data: 任意长度的数据块

        :returns: 需要发送给服务器的数据（可能为空）
        """
        if self.state not in (SessionState.AWAIT_STATUS, SessionState.AWAIT_PONG):
            raise RuntimeError(f"cannot feed data in state {self.state}")

        self.buffer += data
        outgoing = b""
        try:
            while self.state in (SessionState.AWAIT_STATUS, SessionState.AWAIT_PONG):
                packet = read_packet(self.buffer)
                if packet is None:
                    break

                packet_id, body, consumed = packet
                del self.buffer[:consumed]

                if self.state is SessionState.AWAIT_STATUS:
                    outgoing += self._on_status(packet_id, body)
                else:
                    self._on_pong(packet_id, body)
        except Exception:
            self.state = SessionState.FAILED
            raise

        return outgoing

    def result(self) -> StatusPingResult:
        if self.state is not SessionState.DONE:
            raise RuntimeError(f"session not finished ({self.state})")
        return StatusPingResult(self.status_payload, self.latency_ms)  # type: ignore

    def _on_status(self, packet_id: int, body: bytes) -> bytes:
        if packet_id != STATUS_PACKET_ID:
            raise ProtocolError(
                ProtocolErrorKind.UNEXPECTED_PACKET,
                f"expected status response 0x00, got {packet_id:#04x}",
            )

        decoded = unpack_string(body, 0, MAX_STATUS_LENGTH)
        if decoded is None:
            raise ProtocolError(
                ProtocolErrorKind.MALFORMED_STATUS_JSON,
                "status string longer than its packet",
            )

        try:
            payload_obj = json.loads(decoded[0])
        except (json.JSONDecodeError, RecursionError) as e:
            raise ProtocolError(ProtocolErrorKind.MALFORMED_STATUS_JSON, str(e)) from e
        if not isinstance(payload_obj, dict):
            raise ProtocolError(
                ProtocolErrorKind.MALFORMED_STATUS_JSON, "status payload is not an object"
            )

        self.status_payload = payload_obj
        self.state = SessionState.AWAIT_PONG
        self.ping_sent_at = perf_counter()
        return pack_packet(PING_PACKET_ID, self.payload)

    def _on_pong(self, packet_id: int, body: bytes) -> None:
        if packet_id != PING_PACKET_ID:
            raise ProtocolError(
                ProtocolErrorKind.UNEXPECTED_PACKET,
                f"expected pong 0x01, got {packet_id:#04x}",
            )
        if body != self.payload:
            raise ProtocolError(
                ProtocolErrorKind.PING_PAYLOAD_MISMATCH,
                f"sent {self.payload.hex()}, got {body.hex()}",
            )

        self.latency_ms = round((perf_counter() - self.ping_sent_at) * 1000)  # type: ignore
        self.state = SessionState.DONE


def status_ping(
    host: str,
    port: int,
    timeout: float = DEFAULT_TIMEOUT,
    protocol_version: int = DEFAULT_PROTOCOL_VERSION,
    refer: str | None = None,
) -> StatusPingResult:
    """
    对服务器执行一次完整的 SLP 状态查询与 Ping。

    :params host: 连接的地址
    :params port: 连接的端口
    :params timeout: 整个会话的超时时间（秒）
    :params protocol_version: 握手包中的协议版本
    :params refer: 写入握手包的地址，默认使用 host

    :returns: 状态 JSON 与 Ping 延迟
    :raises TimeoutError: 会话超时
    :raises ProtocolError: 服务器响应不符合协议
    :raises OSError: 连接失败或被中断
    """
    deadline = perf_counter() + timeout
    session = StatusSession(refer or host, port, protocol_version)

    sock = socket.create_connection((host, port), timeout=timeout)
    try:
        sock.sendall(session.start())

        while session.state is not SessionState.DONE:
            remaining = deadline - perf_counter()
            if remaining <= 0:
                raise TimeoutError(f"status session timed out in state {session.state}")
            sock.settimeout(remaining)

            chunk = sock.recv(4096)
            if not chunk:
                raise ConnectionAbortedError(
                    f"connection closed by server in state {session.state}"
                )
            logger.debug(f"[SLP] {host}:{port} received {len(chunk)} bytes")

            if outgoing := session.feed(chunk):
                sock.sendall(outgoing)
    finally:
        if session.state is not SessionState.DONE:
            session.state = SessionState.FAILED
        sock.close()

    result = session.result()
    logger.debug(f"[SLP] {host}:{port} ping {result.latency_ms}ms")
    return result


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _parse_sample(sample: Any) -> list[PlayerRef]:
    players: list[PlayerRef] = []
    if not isinstance(sample, list):
        return players

    for entry in sample:
        if isinstance(entry, dict):
            name = entry.get("name")
            uuid = entry.get("id") or entry.get("uuid")
            if name and uuid:
                players.append(Player(name=str(name), uuid=str(uuid)))
            elif name:
                players.append(str(name))
        elif entry is not None:
            players.append(str(entry))
    return players


def parse_status_payload(payload_obj: dict[str, Any]) -> StatusResponse:
    """
    将状态 JSON 转换为 `StatusResponse`。

    :param payload_obj: 服务器返回的状态 JSON
    """
    version = payload_obj.get("version")
    version = version if isinstance(version, dict) else {}
    players = payload_obj.get("players")
    players = players if isinstance(players, dict) else {}

    raw_description = payload_obj.get("description")
    protocol_version = version.get("protocol")

    return StatusResponse(
        version_name=str(version.get("name") or "Unknown"),
        protocol_version=_as_int(protocol_version) if protocol_version is not None else None,
        players_online=_as_int(players.get("online")),
        players_max=_as_int(players.get("max")),
        player_sample=_parse_sample(players.get("sample")),
        description=flatten_description(raw_description) if raw_description is not None else None,
        stripped_description=strip_formatting(raw_description) if raw_description is not None else None,
        favicon=payload_obj.get("favicon") or None,
        modpack=extract_modpack(payload_obj),
        is_modded=bool(payload_obj.get("isModded")),
        prevents_chat_reports=bool(payload_obj.get("preventsChatReports")),
    )
