import re
from typing import Any


def flatten_description(raw_motd: Any) -> str:
    """将聊天组件拼接为纯文本，保留 `§` 格式代码"""
    if raw_motd is None:
        return ""
    if isinstance(raw_motd, str):
        return raw_motd
    if isinstance(raw_motd, list):
        return "".join(flatten_description(sub) for sub in raw_motd)
    if isinstance(raw_motd, dict):
        text = raw_motd.get("text", "")
        text = text if isinstance(text, str) else str(text)
        for sub in raw_motd.get("extra") or []:
            text += flatten_description(sub)
        return text
    return str(raw_motd)


def strip_formatting(raw_motd: Any) -> str:
    """
    去除 MOTD 中所有格式代码。
    支持 JSON 聊天组件（字典或列表）以及旧版 `§` 格式代码

    :param raw_motd: 原始 MOTD
    """
    return re.sub(r"§.", "", flatten_description(raw_motd))
