import nonebot

nonebot.init(driver="~none")
nonebot.require("nonebot_plugin_mcdash")
