import json
import logging
import os
from datetime import datetime
from typing import Dict, List

import yaml

from istream_abr.config.config import ABRConfig
from istream_abr.core.module_composer import ABRComposer
from istream_abr.modules.host import NetworkPeriod, TraceContext, TraceSimulator, load_trace


def load_from_dict(d: Dict, config: ABRConfig):
    for k, v in d.items():
        if isinstance(v, List):
            # 列表值整体替换默认值
            config.__setattr__(k, list(v))
        elif isinstance(v, dict):
            prev_d = config.__getattribute__(k)
            if prev_d is None:
                prev_d = {}
                config.__setattr__(k, prev_d)
            prev_d.update(v)
        elif v is not None:
            config.__setattr__(k, v)
    return config


def load_from_config_file(config_path: str, config: ABRConfig):
    if config_path.endswith(".yaml") or config_path.endswith(".yml"):
        with open(config_path) as f:
            return load_from_dict(yaml.safe_load(f), config)
    elif config_path.endswith(".json"):
        with open(config_path) as f:
            return load_from_dict(json.load(f), config)
    else:
        raise Exception(f"Config file format not supported. Use JSON or YAML. Used : {config_path}")


def main():
    # 创建组合器实例，用于管理和组合各个模块
    composer = ABRComposer()
    # 注册码率决策器与分析器模块
    composer.register_core_modules()

    config = ABRConfig()
    parser = composer.create_arg_parser()
    args = vars(parser.parse_args())

    # 如果指定了配置文件，优先从配置文件加载参数
    if args["config"] is not None:
        load_from_config_file(args["config"], config)
    del args["config"]
    verbose_flag = args.pop("verbose", False)

    # 用命令行参数覆盖配置文件或默认配置
    load_from_dict(args, config)

    # 设置日志输出到文件与控制台
    log_dir = config.log
    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_file = os.path.join(log_dir, f"{config.mod_abr.split(':', 1)[0]}_{timestamp}.log")
    log_level = logging.DEBUG if verbose_flag else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(name)20s %(levelname)8s:\t%(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding="utf-8"),
            logging.StreamHandler()
        ],
        force=True,
    )

    # 校验配置参数的有效性
    config.validate()

    if config.trace:
        trace = load_trace(config.trace)
    else:
        trace = [NetworkPeriod(duration=config.segment_duration, bandwidth=config.bandwidth, latency=0.0)]

    context = TraceContext(config)
    engine = composer.make_engine(config, context, clock=context.clock)
    simulator = TraceSimulator(config, context, engine, trace)
    result = simulator.run()
    logging.getLogger("main").info(f"Simulation result: {result}")

    # 清理模块，分析器在此保存结果
    composer.cleanup()


if __name__ == "__main__":
    main()
