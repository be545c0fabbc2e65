import re
from pathlib import Path
import tomllib
from typing import Any

from nonebot import logger

from .models import ModInfo, ModpackInfo, ModpackOverride
from .motd import flatten_description

MODPACK_ID_HINTS = ("pack", "modpack", "core")
"""mod ID 中包含这些片段时，视为整合包的标识 mod"""
MAX_LISTED_MODS = 15


def _mod_id(mod: Any) -> str:
    if isinstance(mod, dict):
        return str(mod.get("modId") or mod.get("modid") or mod.get("id") or "")
    return str(mod)


def _mod_version(mod: Any) -> str | None:
    if isinstance(mod, dict):
        version = mod.get("version") or mod.get("modmarker")
        return str(version) if version else None
    return None


def _find_mod_list(mod_info: Any) -> list:
    if isinstance(mod_info, list):
        return mod_info
    if isinstance(mod_info, dict):
        for key in ("modList", "mods"):
            if isinstance(mod_info.get(key), list):
                return mod_info[key]
    return []


def extract_modpack(payload_obj: dict[str, Any]) -> ModpackInfo | None:
    """
    从状态 JSON 中推断整合包信息。

    Forge/NeoForge 服务器会在 `modinfo`、`forgeData.mods` 或 `neoforge.mods`
    中附带 mod 列表，部分服务器只给出 `isModded` 标记。

    :param payload_obj: 服务器返回的状态 JSON

    :returns: 整合包信息，原版服务器返回 `None`
    """
    forge_data = payload_obj.get("forgeData")
    neoforge = payload_obj.get("neoforge")
    mod_info = (
        payload_obj.get("modinfo")
        or (forge_data.get("mods") if isinstance(forge_data, dict) else None)
        or (neoforge.get("mods") if isinstance(neoforge, dict) else None)
    )
    is_modded = bool(payload_obj.get("isModded"))

    mod_list = _find_mod_list(mod_info)
    if not mod_list and not is_modded:
        return None

    name: str | None = None
    version: str | None = None
    for mod in mod_list[:10]:
        mod_id = _mod_id(mod).lower()
        if any(hint in mod_id for hint in MODPACK_ID_HINTS):
            name, version = mod_id, _mod_version(mod)
            break

    if not name and mod_list:
        name = _mod_id(mod_list[0]) or "Unknown Modpack"

    if not name:
        description = flatten_description(payload_obj.get("description"))
        if match := re.search(
            r"([A-Za-z0-9\s]+)\s*(?:v|version)?\s*([0-9.]+)", description, re.IGNORECASE
        ):
            name = match[1].strip() or None
            version = match[2] or version

    mod_type = mod_info.get("type") if isinstance(mod_info, dict) else None

    return ModpackInfo(
        type=str(mod_type or "NEOFORGE"),
        name=name or ("Modded Server" if is_modded else "Unknown"),
        version=version,
        mod_count=len(mod_list) or None,
        mods=[
            ModInfo(id=_mod_id(mod) or "unknown", version=_mod_version(mod) or "unknown")
            for mod in mod_list[:MAX_LISTED_MODS]
        ],
    )


def read_modpack_config(path: str | Path | None) -> ModpackOverride | None:
    """
    读取整合包配置文件（如 `bcc-common.toml`）中的 `[general]` 段。

    文件缺失或无法解析时只记录日志，返回 `None`，不影响状态查询。

    :param path: TOML 文件路径
    """
    if not path:
        return None

    path = Path(path)
    if not path.is_file():
        logger.warning(f"Modpack config file not found at: {path}")
        return None

    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.error(f"Error reading modpack config: {e}")
        return None

    general = data.get("general")
    if not isinstance(general, dict):
        return ModpackOverride()

    return ModpackOverride(
        name=general.get("modpackName") or None,
        version=str(general["modpackVersion"]) if general.get("modpackVersion") else None,
        project_id=general.get("modpackProjectID") or None,
    )
