from nonebot import require
from nonebot.plugin import PluginMetadata, inherit_supported_adapters
from .config import Config
from .configs import VERSION, lang_data
from .data_source import default_endpoint, get_latency, get_unified_status
from .models import Endpoint
from .utils import (
    build_latency_result,
    build_status_result,
    change_language_to,
    current_language,
    handle_exception,
    is_qbot,
    is_validity_address,
    parse_host,
)

require("nonebot_plugin_alconna")
require("nonebot_plugin_uninfo")
from arclet.alconna import Alconna, Args, CommandMeta
from nonebot_plugin_alconna import Arparma, Text, UniMessage, on_alconna
from nonebot_plugin_uninfo import Session, UniSession

__plugin_meta__ = PluginMetadata(
    name="Minecraft服务器面板",
    description="Minecraft服务器状态面板：SLP/Query 合并状态与外部延迟估算/Minecraft server status dashboard with SLP/Query merging and latency estimation",  # noqa: E501
    type="application",
    supported_adapters=inherit_supported_adapters(
        "nonebot_plugin_alconna", "nonebot_plugin_uninfo"
    ),
    config=Config,
    usage="""
    Minecraft服务器状态面板
    用法：
        服务器状态 / 服务器状态 [ip]:[端口]
        延迟
        设置语言 zh-cn
        当前语言
        语言列表
    usage:
        mcstatus / mcstatus ip:port
        mclatency
        set_lang en
        lang_now
        lang_list
    """.strip(),
    extra={"author": "molanp <luotian233@foxmail.com>", "version": VERSION},
)

status = on_alconna(
    Alconna("mcstatus", Args["host?", str]),
    aliases={"服务器状态"},
    priority=10,
    block=True,
)

latency_check = on_alconna(
    Alconna("mclatency", meta=CommandMeta(compact=True)),
    aliases={"延迟"},
    priority=10,
    block=True,
)

lang_change = on_alconna(
    Alconna("set_lang", Args["language", str], meta=CommandMeta(compact=True)),
    aliases={"设置语言"},
    priority=10,
    block=True,
)

lang_now = on_alconna(
    Alconna("lang_now", meta=CommandMeta(compact=True)),
    aliases={"当前语言"},
    priority=10,
    block=True,
)

lang_list = on_alconna(
    Alconna("lang_list", meta=CommandMeta(compact=True)),
    aliases={"语言列表"},
    priority=10,
    block=True,
)


@status.handle()
async def _(p: Arparma, session: Session = UniSession()):
    text = lang_data[current_language()]
    if not p.find("host"):
        endpoint = default_endpoint()
        await get_info(endpoint, str(endpoint), session)
        return

    host = p.query("host")
    address, port = await parse_host(host)
    if not 0 <= port <= 65535:
        await status.finish(Text(text["where_port"]), reply_to=True)
    if not is_validity_address(address):
        await status.finish(Text(text["where_ip"]), reply_to=True)

    await get_info(Endpoint(host=address, port=port or 25565), host, session)


async def get_info(endpoint: Endpoint, address: str, session):
    try:
        message_list = build_status_result(await get_unified_status(endpoint), address)
        if is_qbot(session):
            for m in message_list:
                await status.send(UniMessage(m), reply_to=True)
        else:
            await status.send(UniMessage(message_list), reply_to=True)
    except Exception as e:
        await status.send(handle_exception(e), reply_to=True)


@latency_check.handle()
async def _():
    try:
        await latency_check.send(build_latency_result(await get_latency()), reply_to=True)
    except Exception as e:
        await latency_check.send(handle_exception(e), reply_to=True)


@lang_change.handle()
async def _(language: str):
    if language:
        await lang_change.send(Text(change_language_to(language)), reply_to=True)
    else:
        await lang_change.send(Text("Language?"), reply_to=True)


@lang_now.handle()
async def _():
    await lang_now.send(Text(f"Language: {current_language()}."), reply_to=True)


@lang_list.handle()
async def _():
    i = "\n".join(list(lang_data.keys()))
    await lang_list.send(Text(f"Language List:\n{i}"), reply_to=True)
