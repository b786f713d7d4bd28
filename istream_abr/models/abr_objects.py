from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class State(Enum):
    # 只有一个码率档位（或初始化失败）- 永远返回"不切换"
    ONE_BITRATE = 0
    # 启动阶段 - 按最近测得的安全吞吐量选择码率，并设置占位缓冲
    STARTUP = 1
    # 缓冲已建立 - 完整的决策策略生效
    STEADY = 2


@dataclass
class ControlParameters:
    """缓冲占用启发式的控制参数"""
    gp: float
    Vp: float


@dataclass
class OptimizerParameters:
    """漂移加惩罚优化器的控制参数"""
    alpha: float
    VL: float
    horizon: float
    target_buffer: float


@dataclass
class DecisionState:
    """
    单个媒体类型的决策状态 - 由决策引擎独占
    首次决策时惰性创建，拖动时重置，会话结束时销毁
    """
    state: State
    bitrates: List[float] = field(default_factory=list)
    utilities: List[float] = field(default_factory=list)
    stable_buffer_time: float = 0.0
    gp: float = 0.0
    Vp: float = 0.0

    # 占位缓冲（秒），始终 >= 0
    placeholder_buffer: float = 0.0
    last_quality: int = 0
    # 外部请求的码率（例如其他规则要求的降级），用于下载放弃时的回退
    abr_quality: Optional[int] = None

    # 段时间相关字段，单位均为秒；None 表示未知
    last_segment_start: Optional[float] = None
    last_segment_duration_s: Optional[float] = None
    last_segment_request_time: Optional[float] = None
    last_segment_finish_time: Optional[float] = None
    last_call_time: Optional[float] = None
    most_advanced_segment_start: Optional[float] = None
    last_segment_was_replacement: bool = False

    # [实验] 优化器状态：上一次决策得到的单纯形权重、虚拟队列
    w: Optional[List[float]] = None
    Q1: float = 0.0


@dataclass
class SwitchRequest:
    """
    一次决策的结果
    quality 为 None 表示不改变当前码率（no-op）
    """
    quality: Optional[int] = None
    delay_ms: float = 0.0
    reason: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_no_change(self) -> bool:
        return self.quality is None
