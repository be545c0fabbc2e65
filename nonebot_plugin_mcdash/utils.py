import base64
import binascii
import re
import traceback

import idna
from nonebot import logger, require

from .configs import lang, lang_data
from .models import LatencyMeasurement, Player, UnifiedStatus

require("nonebot_plugin_alconna")
require("nonebot_plugin_uninfo")
from nonebot_plugin_alconna import Image, SupportScope, Text
from nonebot_plugin_uninfo import Uninfo


def handle_exception(e):
    error_message = str(e)
    logger.error(traceback.format_exc())
    return Text(f"[CrashHandle]{error_message}\n>>更多信息详见日志文件<<")


def change_language_to(language: str):
    global lang

    try:
        _ = lang_data[language]
    except KeyError:
        return f"No language named '{language}'!"
    else:
        if language == lang:
            return f"The language is already '{language}'!"
        lang = language
        return f"Change to '{language}' success!"


def current_language() -> str:
    return lang


def _favicon_image(favicon: str | None) -> Image | None:
    if not favicon or "," not in favicon:
        return None
    try:
        return Image(raw=base64.b64decode(favicon.split(",", 1)[1]))
    except (binascii.Error, ValueError):
        logger.debug("favicon is not valid base64, skipped")
        return None


def build_status_result(status: UnifiedStatus, address: str) -> list[Image | Text]:
    """
    将统一状态渲染为消息。

    :params status: 统一状态
    :params address: 用户输入的地址
    """
    text = lang_data[lang]
    if not status.online:
        return [
            Text(f"{text['offline']}{status.error}\n{text['address']}{address}")
        ]

    result = (
        f"{text['online']}"
        f"\n{text['address']}{address}"
        f"\n{text['version']}{status.version}"
        f"\n{text['protocol_version']}{status.protocol_version}"
        f"\n{text['delay']}"
        + (f"{status.latency}ms" if status.latency is not None else "-")
    )
    if status.stripped_description:
        result += f"\n{text['motd']}{status.stripped_description}"
    result += f"\n{text['players']}{status.players.online}/{status.players.max}"

    if status.players.sample:
        names = [p.name if isinstance(p, Player) else p for p in status.players.sample]
        result += f"\n{text['player_list']}{', '.join(names)}"

    if status.modpack:
        modpack = status.modpack.name or ""
        if status.modpack.version:
            modpack += f" {status.modpack.version}"
        result += f"\n{text['modpack']}{modpack}"
        if status.modpack.mod_count:
            result += f"\n{text['mod_count']}{status.modpack.mod_count}"

    if query := status.query:
        if query.map:
            result += f"\n{text['map']}{query.map}"
        if query.software:
            result += f"\n{text['software']}{query.software}"
        if query.plugins:
            result += f"\n{text['plugins']}{query.plugins}"

    messages: list[Image | Text] = [Text(result)]
    if image := _favicon_image(status.favicon):
        messages.extend((Text("\nFavicon:"), image))
    return messages


def build_latency_result(measurement: LatencyMeasurement | None) -> Text:
    text = lang_data[lang]
    if measurement is None:
        return Text(text["latency_unknown"])

    result = (
        f"{text['latency']}{measurement.value_ms}ms"
        f"\n{text['method']}{measurement.method}"
        f"\n{text['confidence']}{measurement.confidence_level}"
    )
    if measurement.strategies:
        result += "\n" + ", ".join(
            f"{s.method}={s.latency_ms}ms" for s in measurement.strategies
        )
    if measurement.suspect:
        result += f"\n{text['internal_routing']}"
    return Text(result)


async def parse_host(host_name: str) -> tuple[str, int]:
    """
    解析主机名（可选端口）。

    该函数尝试从主机名中提取IP地址和端口号。如果主机名中未指定端口，
    则默认端口号为0。

    :params host_name: 主机名，可能包含端口。

    :returns: 一个元组，包含两个元素：
    - 第一个元素是主机的地址
    - 第二个元素是主机的端口号，如果主机名中未指定端口，则为0。
    """
    pattern = r"(?:\[(.+?)\]|(.+?))(?:[:：](\d+))?$"
    if not (match := re.match(pattern, host_name)):
        return host_name, 0

    address = match[1] or match[2]
    port = int(match[3]) if match[3] else 0

    return address, port


def is_validity_address(address: str) -> bool:
    """
    判断给定的地址是否为有效的域名或IP地址。

    :params address: 需要验证的地址，可以是域名地址或IP地址。

    :returns: 如果地址有效则返回True，否则返回False。
    """

    return (is_domain(address)) or (is_ipv4(address)) or (is_ipv6(address))


def is_domain(address: str) -> bool:
    """
    判断给定的地址是否为域名。

    :params address: 需要验证的地址。

    :returns: 如果地址为域名则返回True，否则返回False。
    """
    try:
        punycode_address = idna.encode(address).decode("utf-8")
    except idna.IDNAError:
        return False

    domain_pattern = re.compile(
        r"^(?!-)(?:[A-Za-z0-9-]{1,63}\.)+(?:[A-Za-z]{2,}|xn--[A-Za-z0-9-]{2,})$|^(localhost)$"
    )
    return bool(domain_pattern.match(punycode_address))


def is_ipv4(address: str) -> bool:
    """
    判断给定的地址是否为IPv4地址。

    :params address: 需要验证的地址。

    :returns: 如果地址为IPv4地址则返回True，否则返回False。
    """
    ipv4_pattern = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")
    if not ipv4_pattern.match(address):
        return False

    return all(0 <= int(part) <= 255 for part in address.split("."))


def is_ipv6(address: str) -> bool:
    """
    判断给定的地址是否为IPv6地址。

    :params address: 需要验证的地址。

    :returns: 如果地址为IPv6地址则返回True，否则返回False。
    """
    ipv6_pattern = re.compile(
        r"^\s*((([0-9A-Fa-f]{1,4}:){7}([0-9A-Fa-f]{1,4}|:))|(([0-9A-Fa-f]{1,4}:){6}(:[0-9A-Fa-f]{1,4}|((25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)(\.(25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)){3})|:))|(([0-9A-Fa-f]{1,4}:){5}(((:[0-9A-Fa-f]{1,4}){1,2})|:((25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)(\.(25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)){3})|:))|(([0-9A-Fa-f]{1,4}:){4}(((:[0-9A-Fa-f]{1,4}){1,3})|((:[0-9A-Fa-f]{1,4})?:((25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)(\.(25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)){3}))|:))|(([0-9A-Fa-f]{1,4}:){3}(((:[0-9A-Fa-f]{1,4}){1,4})|((:[0-9A-Fa-f]{1,4}){0,2}:((25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)(\.(25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)){3}))|:))|(([0-9A-Fa-f]{1,4}:){2}(((:[0-9A-Fa-f]{1,4}){1,5})|((:[0-9A-Fa-f]{1,4}){0,3}:((25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)(\.(25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)){3}))|:))|(([0-9A-Fa-f]{1,4}:){1}(((:[0-9A-Fa-f]{1,4}){1,6})|((:[0-9A-Fa-f]{1,4}){0,4}:((25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)(\.(25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)){3}))|:))|(:(((:[0-9A-Fa-f]{1,4}){1,7})|((:[0-9A-Fa-f]{1,4}){0,5}:((25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)(\.(25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)){3}))|:)))(%.+)?\s*$"
    )
    return bool(ipv6_pattern.match(address))


def is_qbot(session: Uninfo) -> bool:
    """判断bot是否为qq官bot

    参数:
        session: Uninfo

    返回:
        bool: 是否为官bot
    """
    return session.scope == SupportScope.qq_api
