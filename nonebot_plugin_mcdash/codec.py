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
Minecraft 协议所用的 VarInt、字符串与数据包帧的编解码。

解码函数在缓冲区数据不足时返回 `None`，调用方应在收到更多数据后重试；
只有数据本身违反协议时才会抛出 `ProtocolError`。

详见 https://minecraft.wiki/w/Java_Edition_protocol/Data_types
"""

import struct

from .exceptions import ProtocolError, ProtocolErrorKind

VARINT_MAX_BYTES = 5
"""VarInt 最多占用的字节数（32 位）"""
MAX_STRING_LENGTH = 32767
"""普通协议字符串的最大长度"""
MAX_STATUS_LENGTH = 32767 * 4
"""状态 JSON 的最大字节数，协议中的上限按字符计，UTF-8 最坏情况为 4 字节/字符"""
MAX_PACKET_LENGTH = 2097151
"""单个数据包的最大长度（3 字节 VarInt 所能表示的最大值）"""


def pack_varint(data: int) -> bytes:
    """Pack an unsigned 32-bit int (negative values as two's complement) into a varint."""
    if data < -(1 << 31) or data > 0xFFFFFFFF:
        raise ValueError(f"{data} does not fit into a 32-bit varint")
    data &= 0xFFFFFFFF
    ordinal = b""

    while True:
        byte = data & 0x7F
        data >>= 7
        ordinal += struct.pack("B", byte | (0x80 if data > 0 else 0))

        if data == 0:
            break

    return ordinal


def unpack_varint(
    buffer: bytes | bytearray | memoryview, offset: int = 0
) -> tuple[int, int] | None:
    """
    从缓冲区的 `offset` 处读取一个 VarInt。

    :params buffer: 数据缓冲区
    :params offset: 起始偏移

    :returns: `(值, 新偏移)`，数据不足时返回 `None`
    """
    data = 0
    for i in range(VARINT_MAX_BYTES):
        if offset + i >= len(buffer):
            return None

        byte = buffer[offset + i]
        data |= (byte & 0x7F) << 7 * i

        if not byte & 0x80:
            if data > 0xFFFFFFFF:
                raise ProtocolError(
                    ProtocolErrorKind.VARINT_TOO_LARGE, "varint exceeds 32 bits"
                )
            return data, offset + i + 1

    raise ProtocolError(
        ProtocolErrorKind.VARINT_TOO_LARGE,
        f"varint longer than {VARINT_MAX_BYTES} bytes",
    )


def pack_string(value: str) -> bytes:
    """Pack a string as varint length + UTF-8 bytes."""
    raw = value.encode("utf-8")
    return pack_varint(len(raw)) + raw


def unpack_string(
    buffer: bytes | bytearray | memoryview,
    offset: int = 0,
    max_length: int = MAX_STRING_LENGTH,
) -> tuple[str, int] | None:
    """
    读取一个带 VarInt 长度前缀的 UTF-8 字符串。

    :params buffer: 数据缓冲区
    :params offset: 起始偏移
    :params max_length: 允许的最大字节长度

    :returns: `(字符串, 新偏移)`，数据不足时返回 `None`
    """
    header = unpack_varint(buffer, offset)
    if header is None:
        return None

    length, offset = header
    if not 0 <= length <= max_length:
        raise ProtocolError(
            ProtocolErrorKind.INVALID_STRING_LENGTH,
            f"string length {length} outside [0, {max_length}]",
        )

    if offset + length > len(buffer):
        return None

    value = bytes(buffer[offset : offset + length]).decode("utf-8", errors="replace")
    return value, offset + length


def pack_packet(packet_id: int, *fields: bytes) -> bytes:
    """Frame a packet: varint length, varint packet id, payload."""
    body = pack_varint(packet_id) + b"".join(fields)
    return pack_varint(len(body)) + body


def read_packet(
    buffer: bytes | bytearray | memoryview,
) -> tuple[int, bytes, int] | None:
    """
    尝试从缓冲区开头读取一个完整的数据包。

    :params buffer: 数据缓冲区

    :returns: `(数据包 ID, 负载, 已消耗字节数)`，数据包未完整到达时返回 `None`
    """
    header = unpack_varint(buffer, 0)
    if header is None:
        return None

    length, offset = header
    if not 1 <= length <= MAX_PACKET_LENGTH:
        raise ProtocolError(
            ProtocolErrorKind.INVALID_PACKET_LENGTH,
            f"packet length {length} outside [1, {MAX_PACKET_LENGTH}]",
        )

    end = offset + length
    if len(buffer) < end:
        return None

    frame = memoryview(bytes(buffer[offset:end]))
    packet_id = unpack_varint(frame, 0)
    if packet_id is None:
        # the id itself is cut off by the declared length
        raise ProtocolError(
            ProtocolErrorKind.INVALID_PACKET_LENGTH, "packet id truncated by frame"
        )

    return packet_id[0], bytes(frame[packet_id[1] :]), end
