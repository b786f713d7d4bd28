from abc import ABC
from typing import Any, List, Type


# 模块接口基类 - 所有可被依赖注入的接口都继承自该类
class ModuleInterface(ABC):
    pass


# 模块基类 - 提供监听器管理以及 setup/cleanup 生命周期钩子
class Module(ModuleInterface):
    # 由 ModuleOption 装饰器写入的模块元数据
    __mod_name__: str
    __mod_requires__: List[Any]

    def __init__(self) -> None:
        # 事件监听器列表
        self.listeners: List[Any] = []

    def add_listener(self, listener):
        # 同一个监听器只注册一次
        if listener not in self.listeners:
            self.listeners.append(listener)

    def setup(self, config, *args, **kwargs):
        """
        设置模块 - 由组合器在依赖解析完成后调用
        第一个参数为配置对象，其后依次为 requires 中声明的依赖实例
        """
        pass

    def cleanup(self) -> None:
        pass


def ModuleOption(name: str, *, requires: List[str | Type[ModuleInterface]] = []):
    """
    模块注册装饰器 - 为模块类写入名称以及依赖列表

    Args:
        name: 模块名称，用于配置文件和命令行选择
        requires: 依赖列表，可以是模块名称字符串或接口类型
    """

    def decorator(cls):
        cls.__mod_name__ = name
        cls.__mod_requires__ = list(requires)
        return cls

    return decorator
