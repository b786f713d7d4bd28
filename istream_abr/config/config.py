# 导入数据类相关的装饰器和字段工厂函数，用于创建配置类
from dataclasses import dataclass, field
# 导入类型提示，用于可选类型的声明
from typing import Optional


# 静态配置类 - 存放码率决策引擎的全局常量配置参数
class StaticConfig(object):
    # 最小缓冲时长 (秒) - 缓冲低于此值时决策引擎不会主动插入延迟，
    # 同时也是占位缓冲重新缩放时的锚点
    MINIMUM_BUFFER_S = 10

    # 每个码率档位追加的最小缓冲时长 (秒)
    # 例如 5 个码率档位时，在缓冲 = 10 + 5 * 2 = 20s 时切换到最高码率
    MINIMUM_BUFFER_PER_BITRATE_LEVEL_S = 2

    # 占位缓冲衰减因子 - 每完成一个段下载乘以该因子，避免陈旧的补偿长期存在
    PLACEHOLDER_BUFFER_DECAY = 0.99

    # [实验] 漂移加惩罚优化器的规划视野（段数）
    l2a_horizon = 5
    # [实验] 漂移加惩罚优化器的目标缓冲 (秒)
    l2a_target_buffer = 0.5

    # 平滑因子 - 用于带宽估算的移动平均算法
    # 算法: averageSpeed = SMOOTHING_FACTOR * averageSpeed + (1-SMOOTHING_FACTOR) * lastSpeed
    smoothing_factor = 0.5

    # 安全吞吐量系数 - "安全"吞吐量 = 平均吞吐量 * 该系数
    bandwidth_safety_factor = 0.9


# 码率决策配置类 - 使用数据类装饰器，包含决策引擎及参考宿主的所有可配置参数
@dataclass
class ABRConfig:
    # 静态配置引用 - 包含上述静态配置类的所有参数
    static = StaticConfig

    # ======================
    # 决策引擎配置
    # ======================
    # 稳定缓冲目标 (秒) - 宿主配置的缓冲目标，可在播放过程中改变
    stable_buffer_time: float = 12
    # 调试模式 - 为 True 时内部异常直接抛出，而不是退化为保守码率
    debug: bool = False

    # ======================
    # 模块配置 - 定义各个功能模块的实现类型
    # ======================
    # 码率决策策略模块 - "bola" 为缓冲占用启发式，"l2a" 为实验性的漂移加惩罚优化器
    mod_abr: str = "bola"
    # 分析器模块列表 - 数据收集和分析组件，使用工厂函数创建默认列表
    mod_analyzer: list[str] = field(default_factory=lambda: ["data_collector"])

    # ======================
    # 参考宿主（轨迹仿真）配置
    # ======================
    # 网络追踪文件 - [持续时间(秒), 带宽(bps), 时延(秒)] 列表，JSON 或 YAML
    trace: str = ""
    # 码率阶梯 (bps)，升序
    bitrates: list[int] = field(default_factory=lambda: [1000000, 2000000, 4000000])
    # 段时长 (秒)
    segment_duration: float = 4
    # 仿真的段数量
    num_segments: int = 60
    # 恒定带宽 (bps) - 未提供网络追踪文件时使用
    bandwidth: float = 3000000

    # ======================
    # 输出配置
    # ======================
    # 日志文件路径 - 记录运行日志的目录
    log: str = "output/logs"
    # 指标输出文件路径 - 决策数据文件位置
    metric_output: str = "output/data"
    # 图表输出目录 - 为 None 时不绘图
    plots_dir: Optional[str] = None

    def validate(self) -> None:
        """
        配置验证方法 - 确保配置参数设置正确
        检查必需参数是否已正确设置，如果验证失败则抛出断言错误
        """
        # 缓冲目标必须为正数
        assert self.stable_buffer_time > 0, "'stable_buffer_time' must be positive"
        # 码率阶梯必须非空且严格为正
        assert len(self.bitrates) > 0, "A non-empty 'bitrates' ladder is required"
        assert all(b > 0 for b in self.bitrates), "All bitrates must be positive"
        # 码率阶梯必须升序
        assert list(self.bitrates) == sorted(self.bitrates), "'bitrates' must be sorted ascending"
        # 段时长必须为正数
        assert self.segment_duration > 0, "'segment_duration' must be positive"
        # 恒定带宽必须为正数
        assert self.bandwidth > 0, "'bandwidth' must be positive"
