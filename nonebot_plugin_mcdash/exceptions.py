from enum import Enum


class ProtocolErrorKind(Enum):
    """
    协议错误的种类

    - `VARINT_TOO_LARGE`：VarInt 超过 5 字节仍未结束
    - `INVALID_STRING_LENGTH`：字符串长度前缀超出允许范围
    - `INVALID_PACKET_LENGTH`：数据包长度前缀为负数或过大
    - `MALFORMED_STATUS_JSON`：状态响应中的 JSON 无法解析
    - `UNEXPECTED_PACKET`：收到了当前状态下不应出现的数据包
    - `SESSION_MISMATCH`：Query 响应中的会话 ID 与请求不一致
    - `PING_PAYLOAD_MISMATCH`：Pong 回显的负载与发送的 Ping 不一致
    - `MALFORMED_QUERY_RESPONSE`：Query 响应结构损坏
    """

    def __str__(self) -> str:
        return str(self.name)

    VARINT_TOO_LARGE = 1
    INVALID_STRING_LENGTH = 2
    INVALID_PACKET_LENGTH = 3
    MALFORMED_STATUS_JSON = 4
    UNEXPECTED_PACKET = 5
    SESSION_MISMATCH = 6
    PING_PAYLOAD_MISMATCH = 7
    MALFORMED_QUERY_RESPONSE = 8


class ProtocolError(ValueError):
    """对端发送了格式错误或不符合预期的数据"""

    def __init__(self, kind: ProtocolErrorKind, message: str = "") -> None:
        self.kind = kind
        self.message = message or str(kind)
        super().__init__(f"{kind}: {self.message}")
