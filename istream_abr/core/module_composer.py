import argparse
import logging
import time
from collections import defaultdict
from pprint import pformat
from typing import Any, Callable, Dict, Optional, Type, TypedDict

from istream_abr.config.config import ABRConfig
from istream_abr.core.abr import ABRContext, QualityDecider
from istream_abr.core.module import Module, ModuleInterface
from istream_abr.modules.abr import BufferOccupancyDecider, DecisionEngine, DriftPlusPenaltyOptimizer
from istream_abr.modules.analyzer import DecisionAnalyzer

# 模块初始化函数类型定义 - 用于创建模块实例的函数签名
ModInitFnType = Callable[[str, Any, Any], Dict[str, Module]]


def get_mod_name(val: str):
    """
    从模块配置字符串中提取模块名称
    模块配置格式: "mod_name:prop1=val1,prop2=val2"
    """
    return val.split(":", 1)[0].lower()


def get_mod_props(val: str):
    """
    从模块配置字符串中提取模块属性
    解析格式: "mod_name:prop1=val1,prop2=val2"，没有等号的属性默认为True
    """
    _, sep, props = val.partition(":")
    if not sep:
        return {}

    result = {}
    for prop in props.split(","):
        key, eq, value = prop.partition("=")
        result[key] = value if eq else True
    return result


class ModuleCliConfig(TypedDict):
    """
    模块命令行配置类型定义
    """
    help: Optional[str]
    required: Optional[bool]
    allow_multi: Optional[bool]


class ABRComposer:
    """
    组合器 - 负责模块注册、依赖解析、实例创建以及决策引擎的组装
    """
    log = logging.getLogger("ABRComposer")

    module_cli: Dict[str, ModuleCliConfig]
    module_init_fn: Dict[str, ModInitFnType]
    module_options: Dict[str, Dict[str, Type[Module]]]
    modules: Dict[str, Dict[str, Module]]

    def __init__(self) -> None:
        self.module_options = {}
        self.modules = defaultdict(dict)
        self.module_init_fn = {}
        self.module_cli = defaultdict(lambda: ModuleCliConfig(help="[Module]", allow_multi=False, required=False))

    def get_deps(self, reqs: list[str | Type[ModuleInterface]]):
        """
        根据模块的依赖要求，从已创建的模块中找到对应的依赖实例

        Args:
            reqs: 依赖要求列表，可以是模块名称字符串或接口类型

        Raises:
            Exception: 当找不到必需的依赖模块，或有多个模块满足同一依赖时
        """
        deps = []
        for req in reqs:
            matches = [
                mod
                for mods in self.modules.values()
                for mod_name, mod in mods.items()
                if (mod_name == req if isinstance(req, str) else isinstance(mod, req))
            ]
            if len(matches) == 0:
                raise Exception(f"Module dependency not found : {req}")
            if len(matches) > 1:
                raise Exception(f"Ambiguous module dependency {req}: {len(matches)} modules match")
            deps.append(matches[0])
        return deps

    def create_arg_parser(self):
        """
        根据注册的模块自动生成命令行参数选项

        参数未在命令行提供时 argparse 返回 None，load_from_dict 会跳过 None 值，
        保留配置文件或 config.py 中的默认值
        """
        parser = argparse.ArgumentParser(description="IStream ABR decision engine (trace simulation)")

        parser.add_argument("-c", "--config", help="Configure using yaml/json", required=False)
        parser.add_argument("-t", "--trace", help="Network trace location", type=str, required=False)
        parser.add_argument("-v", "--verbose", help="Enable debug level output", action="store_true", required=False)
        parser.add_argument("-l", "--log", help="Log directory", type=str, required=False)
        parser.add_argument("--bitrates", help="Bitrate ladder (bps)", type=int, nargs="+", required=False)
        parser.add_argument("--stable_buffer_time", help="Stable buffer target (s)", type=float, required=False)
        parser.add_argument("--segment_duration", help="Segment duration (s)", type=float, required=False)
        parser.add_argument("--num_segments", help="Number of segments to simulate", type=int, required=False)
        parser.add_argument("--bandwidth", help="Constant bandwidth (bps) when no trace is given", type=float, required=False)
        parser.add_argument("--metric_output", help="Directory for decision data", type=str, required=False)
        parser.add_argument("--plots_dir", help="Directory for plots", type=str, required=False)
        parser.add_argument("--debug", help="Raise internal decision errors", action="store_true", default=None)

        for mod_type, mods in self.module_options.items():
            cli_opt = self.module_cli[mod_type]
            parser.add_argument(
                f"--mod_{mod_type}",
                help=cli_opt["help"],
                required=bool(cli_opt["required"]),
                action=("append" if cli_opt["allow_multi"] else "store"),
            )

        return parser

    def register_module(
        self,
        mod_type: str,
        mod_class: Type[Module] | list[Type[Module]],
        init_fn: ModInitFnType | None,
        mod_help: Optional[str] = None,
        mod_required: Optional[bool] = None,
        mod_allow_multi: Optional[bool] = None,
    ):
        """
        将模块类注册到组合器中，并配置其CLI选项

        Args:
            mod_type: 模块类型名称
            mod_class: 模块类或模块类列表
            init_fn: 模块初始化函数
        """
        if init_fn is not None:
            self.module_init_fn[mod_type] = init_fn

        cli = self.module_cli[mod_type]
        if mod_help is not None:
            cli["help"] = mod_help
        if mod_required is not None:
            cli["required"] = mod_required
        if mod_allow_multi is not None:
            cli["allow_multi"] = mod_allow_multi

        if mod_type not in self.module_options:
            self.module_options[mod_type] = {}

        for _mod_class in mod_class if isinstance(mod_class, list) else [mod_class]:
            if _mod_class.__mod_name__ in self.module_options[mod_type]:
                raise Exception(f"Module with name {_mod_class.__mod_name__} already registered under {mod_type}.")
            self.module_options[mod_type][_mod_class.__mod_name__] = _mod_class

    def make_engine(
        self,
        config: ABRConfig,
        context: ABRContext,
        clock: Callable[[], float] = time.time,
    ) -> DecisionEngine:
        """
        根据配置创建并初始化所有模块，组装决策引擎

        Raises:
            Exception: 当模块初始化函数未提供、模块名称未知或依赖缺失时
        """
        list(map(self.log.debug, pformat(config).splitlines()))

        self.modules.clear()
        for attr_name, val in config.__dict__.items():
            # 只处理以"mod_"开头的模块配置
            if not attr_name.startswith("mod_"):
                continue
            mod_type_name = attr_name[4:]
            if self.module_init_fn.get(mod_type_name) is None:
                raise Exception(f"Module init function not provided for module {mod_type_name}")
            self.modules[mod_type_name].update(self.module_init_fn[mod_type_name](mod_type_name, val, self))

        # 按依赖关系设置所有模块
        for mod_type, mods in self.modules.items():
            for mod_name, mod in mods.items():
                deps = self.get_deps(mod.__class__.__mod_requires__)
                mod.setup(config, *deps)

        decider = self.get_deps([QualityDecider])[0]

        engine = DecisionEngine(config, context, decider, clock=clock)
        for analyzer in self.modules.get("analyzer", {}).values():
            engine.add_listener(analyzer)
        self.log.info(f"Engine ready with decider '{decider.__mod_name__}'")
        return engine

    def cleanup(self):
        for mods in self.modules.values():
            for mod in mods.values():
                mod.cleanup()

    def register_core_modules(self):
        """
        注册核心模块类型
        """
        self.register_module(
            "abr",
            [BufferOccupancyDecider, DriftPlusPenaltyOptimizer],
            single_initializer,
            "Steady-state quality decider",
            False,
        )
        self.register_module(
            "analyzer",
            [DecisionAnalyzer],
            multi_initializer,
            "Analyzers",
            False,
            mod_allow_multi=True,
        )


def _get_mod_class(mod_type: str, mod_name: str, composer: ABRComposer) -> Type[Module]:
    options = composer.module_options[mod_type]
    if mod_name not in options:
        raise Exception(f"Unknown module '{mod_name}' for {mod_type}. Available: {', '.join(options)}")
    return options[mod_name]


def single_initializer(mod_type, mod_name, composer: ABRComposer) -> Dict[str, Module]:
    """
    单模块初始化器

    Raises:
        Exception: 当模块类型不支持单模块时
    """
    if not isinstance(mod_name, str):
        raise Exception(f"Module type {mod_type} only supports single module. Provided {mod_name}")

    return {get_mod_name(mod_name): _get_mod_class(mod_type, get_mod_name(mod_name), composer)(**get_mod_props(mod_name))}


def multi_initializer(mod_type, val, composer: ABRComposer) -> Dict[str, Module]:
    """
    多模块初始化器，支持字符串、列表和字典格式的输入

    Raises:
        Exception: 当模块值格式无效时
    """
    if isinstance(val, str):
        return single_initializer(mod_type, val, composer)
    elif isinstance(val, list):
        return {
            get_mod_name(mod): _get_mod_class(mod_type, get_mod_name(mod), composer)(**get_mod_props(mod)) for mod in val
        }
    elif isinstance(val, dict):
        return {
            mod_key: _get_mod_class(mod_type, get_mod_name(mod), composer)(**get_mod_props(mod))
            for mod_key, mod in val.items()
        }
    else:
        raise Exception(f"Invalid mod value '{val}' received for mod '{mod_type}'")
