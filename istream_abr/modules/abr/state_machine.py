import logging
from typing import Optional, Sequence

from istream_abr.config.config import StaticConfig
from istream_abr.models.abr_objects import DecisionState, State
from istream_abr.modules.abr.parameters import calculate_parameters, utilities_from_bitrates


class StateMachine:
    """
    管理每个媒体类型的生命周期

    ONE_BITRATE : 只有一个码率档位（或初始化失败），终止状态，总是返回"不切换"
    STARTUP     : 设置占位缓冲，使下载码率不超过最近测得的吞吐量
    STEADY      : 缓冲已建立，完整的决策策略生效

    允许的状态转换：STARTUP -> STEADY，任意非终止状态 -> STARTUP（拖动）
    """

    log = logging.getLogger("StateMachine")

    def __init__(self, static=StaticConfig):
        self.static = static

    def initial_state(self, bitrates: Sequence[float], stable_buffer_time: float) -> DecisionState:
        bitrates = list(bitrates)
        utilities = utilities_from_bitrates(bitrates) if bitrates else []
        params = calculate_parameters(stable_buffer_time, bitrates, utilities, self.static)

        if params is None:
            # 只有一个码率档位时才会出现
            return DecisionState(state=State.ONE_BITRATE, bitrates=bitrates, utilities=utilities)

        state = DecisionState(
            state=State.STARTUP,
            bitrates=bitrates,
            utilities=utilities,
            stable_buffer_time=stable_buffer_time,
            gp=params.gp,
            Vp=params.Vp,
        )
        self.clear_on_seek(state)
        return state

    @staticmethod
    def clear_on_seek(state: DecisionState) -> None:
        state.placeholder_buffer = 0.0
        state.most_advanced_segment_start = None
        state.last_segment_was_replacement = False
        state.last_segment_start = None
        state.last_segment_duration_s = None
        state.last_segment_request_time = None
        state.last_segment_finish_time = None
        state.last_call_time = None

    def on_seek(self, state: DecisionState) -> None:
        if state.state is State.ONE_BITRATE:
            return
        self.log.info(f"Seek: {state.state.name} -> STARTUP")
        state.state = State.STARTUP
        self.clear_on_seek(state)

    def maybe_enter_steady(self, state: DecisionState, buffer_level: float) -> bool:
        """段时长已知且真实缓冲 >= 段时长时，从 STARTUP 进入 STEADY"""
        duration: Optional[float] = state.last_segment_duration_s
        if state.state is State.STARTUP and duration is not None and buffer_level >= duration:
            self.log.info(f"STARTUP -> STEADY at buffer level {buffer_level:.3f}s")
            state.state = State.STEADY
            return True
        return False

    def recover(self, state: DecisionState) -> None:
        """异常状态下回到 STARTUP 重新开始"""
        if state.state is State.ONE_BITRATE:
            return
        state.state = State.STARTUP
        self.clear_on_seek(state)
