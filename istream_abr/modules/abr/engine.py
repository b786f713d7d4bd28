import logging
import math
import threading
import time
from typing import Callable, Dict, Optional

from istream_abr.config.config import ABRConfig
from istream_abr.core.abr import ABRContext, DecisionEventListener, QualityDecider
from istream_abr.core.module import Module
from istream_abr.models.abr_objects import DecisionState, State, SwitchRequest
from istream_abr.modules.abr.parameters import calculate_parameters, quality_for_bitrate
from istream_abr.modules.abr.placeholder import PlaceholderBufferTracker
from istream_abr.modules.abr.state_machine import StateMachine


def _is_known(value: Optional[float]) -> bool:
    return value is not None and not math.isnan(value)


# 码率决策引擎 - 每次段请求前由宿主调用 decide()
# 从协作者读取缓冲与吞吐量快照，依次运行 状态机 -> 码率决策器 -> 占位缓冲跟踪器
class DecisionEngine(Module):
    log = logging.getLogger("DecisionEngine")

    def __init__(
        self,
        config: ABRConfig,
        context: ABRContext,
        decider: QualityDecider,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            config: 决策配置
            context: 宿主实现的协作者接口，必须完整实现 ABRContext
            decider: 稳态码率决策策略
            clock: 返回当前时间（秒）的时钟，与指标时间戳使用同一时间基准
        """
        super().__init__()
        # 接线阶段就失败，而不是在每次决策时探测能力
        if not isinstance(context, ABRContext):
            raise TypeError(f"context must implement ABRContext, got {type(context).__name__}")
        if not isinstance(decider, QualityDecider):
            raise TypeError(f"decider must implement QualityDecider, got {type(decider).__name__}")

        self.config = config
        self.context = context
        self.decider = decider
        self.clock = clock

        self.state_machine = StateMachine(config.static)
        self.placeholder = PlaceholderBufferTracker(config.static)

        # 每个媒体类型的决策状态，由引擎独占
        self._states: Dict[str, DecisionState] = {}
        # 每个媒体类型一把可重入锁，串行化同一媒体类型的决策与通知
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, media_type: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(media_type)
            if lock is None:
                lock = self._locks[media_type] = threading.RLock()
            return lock

    def get_state(self, media_type: str) -> Optional[DecisionState]:
        return self._states.get(media_type)

    def _get_state(self, media_type: str, bitrates, stable_buffer_time: float, buffer_level: float) -> DecisionState:
        state = self._states.get(media_type)
        if state is None:
            state = self.state_machine.initial_state(bitrates, stable_buffer_time)
            self._states[media_type] = state
            self.log.info(f"Created {state.state.name} state for {media_type}, bitrates={state.bitrates}")
        elif state.state is not State.ONE_BITRATE:
            self._check_stable_buffer_time(state, stable_buffer_time, buffer_level)
        return state

    def _check_stable_buffer_time(self, state: DecisionState, stable_buffer_time: float, buffer_level: float):
        # 缓冲目标改变时重新计算参数，并修正占位缓冲使决策不产生跳变
        if state.stable_buffer_time == stable_buffer_time:
            return
        params = calculate_parameters(stable_buffer_time, state.bitrates, state.utilities, self.config.static)
        state.stable_buffer_time = stable_buffer_time
        if params is not None and (params.Vp != state.Vp or params.gp != state.gp):
            self.log.info(f"Buffer target changed to {stable_buffer_time}s: Vp {state.Vp:.3f} -> {params.Vp:.3f}")
            self.placeholder.rescale(state, buffer_level, state.Vp, params.Vp)
            state.Vp = params.Vp
            state.gp = params.gp

    def decide(self, media_type: str) -> SwitchRequest:
        """
        为媒体类型的下一个段选择码率

        协作者读取、状态创建与决策都在保护区内；任何内部异常退化为安全吞吐量对应的码率，
        debug 模式下直接抛出

        Returns:
            SwitchRequest: quality 为 None 表示不切换；delay_ms 为建议的请求延迟
        """
        request = SwitchRequest()

        with self._lock_for(media_type):
            now = self.clock()
            bitrates = None
            state: Optional[DecisionState] = None
            buffer_level = 0.0
            safe_throughput = None
            latency = None
            top_quality = None
            try:
                bitrates = self.context.bitrate_list(media_type)
                if not bitrates:
                    # 码率阶梯尚不可用
                    return request

                buffer_level = self.context.buffer_level(media_type)
                state = self._get_state(media_type, bitrates, self.context.stable_buffer_time(), buffer_level)
                if state.state is State.ONE_BITRATE:
                    return request

                throughput = self.context.average_throughput(media_type)
                safe_throughput = self.context.safe_average_throughput(media_type)
                latency = self.context.average_latency(media_type)
                # 宿主允许的最高码率，每次决策只读取一次
                top_quality = min(max(int(self.context.top_quality_index(media_type)), 0), len(bitrates) - 1)

                request.reason["state"] = state.state.name
                request.reason["throughput"] = throughput
                request.reason["latency"] = latency

                if not _is_known(throughput) or not _is_known(safe_throughput):
                    # 仍在启动阶段，信息不足
                    return request

                if state.state is State.STARTUP:
                    self._decide_startup(state, request, buffer_level, safe_throughput, latency, top_quality)
                elif state.state is State.STEADY:
                    self._decide_steady(
                        state, request, now, buffer_level, throughput, safe_throughput, latency, top_quality
                    )
                else:
                    raise RuntimeError(f"Decision invoked in bad state {state.state}")
            except Exception:
                if self.config.debug:
                    raise
                self.log.exception(f"Decision failed for {media_type}, falling back to throughput rule")
                self._fallback(state, request, bitrates, safe_throughput, latency, top_quality)

            self.log.info(
                f"{media_type}: quality={request.quality}, delay={request.delay_ms:.0f}ms, buffer={buffer_level:.3f}s, "
                f"placeholder={state.placeholder_buffer if state else 0.0:.3f}s, "
                f"state={state.state.name if state else None}"
            )
            for listener in self.listeners:
                listener.on_decision(now, media_type, request)
        return request

    def _fallback(
        self,
        state: Optional[DecisionState],
        request: SwitchRequest,
        bitrates,
        safe_throughput: Optional[float],
        latency: Optional[float],
        top_quality: Optional[int],
    ):
        # 尝试恢复：按安全吞吐量选择码率并回到 STARTUP；安全吞吐量未知时不切换
        request.quality = None
        request.delay_ms = 0.0
        if bitrates and _is_known(safe_throughput):
            quality = quality_for_bitrate(bitrates, safe_throughput, latency)
            if top_quality is not None:
                quality = min(quality, top_quality)
            request.quality = quality
            request.reason["throughput"] = safe_throughput
        if state is not None:
            self.state_machine.recover(state)
            request.reason["state"] = state.state.name
            if request.quality is not None:
                state.last_quality = request.quality

    def _decide_startup(
        self,
        state: DecisionState,
        request: SwitchRequest,
        buffer_level: float,
        safe_throughput: float,
        latency: Optional[float],
        top_quality: int,
    ):
        quality = quality_for_bitrate(state.bitrates, safe_throughput, latency, state.last_segment_duration_s)
        quality = min(quality, top_quality)

        request.quality = quality
        request.reason["throughput"] = safe_throughput

        self.placeholder.seed_startup(state, buffer_level, quality)
        state.last_quality = quality

        self.state_machine.maybe_enter_steady(state, buffer_level)

    def _decide_steady(
        self,
        state: DecisionState,
        request: SwitchRequest,
        now: float,
        buffer_level: float,
        throughput: float,
        safe_throughput: float,
        latency: Optional[float],
        top_quality: int,
    ):
        self.placeholder.on_decision(state, now)

        quality = self.decider.choose_quality(state, buffer_level, throughput, safe_throughput, latency)
        quality = min(max(int(quality), 0), top_quality)

        # 不希望用低码率段填满缓冲；缓冲低于 MINIMUM_BUFFER_S 时不会产生延迟
        delay_s = self.placeholder.apply_pacing(state, buffer_level, quality, top_quality)

        request.quality = quality
        request.delay_ms = 1000 * delay_s
        request.reason["buffer_level"] = buffer_level
        request.reason["placeholder_buffer"] = state.placeholder_buffer
        request.reason["delay"] = delay_s

        state.last_quality = quality

    # ======================
    # 宿主通知
    # ======================

    def _active_state(self, media_type: str) -> Optional[DecisionState]:
        state = self._states.get(media_type)
        if state is None or state.state is State.ONE_BITRATE:
            return None
        return state

    def on_segment_loaded(
        self,
        media_type: str,
        start: float,
        duration: float,
        quality: int,
        replacement: Optional[bool] = None,
    ) -> None:
        """
        段加载完成通知

        Args:
            start: 段的媒体起始时间（秒）
            duration: 段时长（秒）
            quality: 实际下载的码率索引
            replacement: 是否为替换段；为 None 时根据起始时间是否前进来判断
        """
        with self._lock_for(media_type):
            state = self._active_state(media_type)
            if state is None:
                return
            advanced = state.most_advanced_segment_start is None or start > state.most_advanced_segment_start
            if advanced:
                state.most_advanced_segment_start = start
            state.last_segment_was_replacement = (not advanced) if replacement is None else replacement

            state.last_segment_start = start
            state.last_segment_duration_s = duration
            state.last_quality = quality

            self._check_new_segment(media_type, state)

    def on_metric_added(
        self,
        media_type: str,
        request_time: float,
        finish_time: float,
        is_media_segment: bool = True,
    ) -> None:
        """已完成请求的指标通知，只处理媒体段请求"""
        if not is_media_segment:
            return
        with self._lock_for(media_type):
            state = self._active_state(media_type)
            if state is None:
                return
            state.last_segment_request_time = request_time
            state.last_segment_finish_time = finish_time

            self._check_new_segment(media_type, state)

    def _check_new_segment(self, media_type: str, state: DecisionState) -> None:
        if self.placeholder.on_segment_complete(state, self.context.buffer_level(media_type)):
            self.log.debug(f"{media_type}: segment complete, placeholder={state.placeholder_buffer:.3f}s")

    def on_quality_change_requested(self, media_type: str, new_quality: int) -> None:
        # 保存外部的码率切换请求，放弃下载时使用
        with self._lock_for(media_type):
            state = self._active_state(media_type)
            if state is not None:
                state.abr_quality = new_quality

    def on_fragment_loading_abandoned(self, media_type: str) -> None:
        with self._lock_for(media_type):
            state = self._active_state(media_type)
            if state is None:
                return
            self.placeholder.on_abandoned(state, self.context.buffer_level(media_type))
            self.log.info(f"{media_type}: download abandoned, placeholder={state.placeholder_buffer:.3f}s")

    def on_buffer_empty(self, media_type: Optional[str] = None) -> None:
        # 发生卡顿时，不希望占位缓冲人为地抬高码率
        now = self.clock()
        media_types = list(self._states) if media_type is None else [media_type]
        for mt in media_types:
            if mt not in self._states:
                # 从未决策过的媒体类型没有状态，也不产生锁和卡顿通知
                continue
            with self._lock_for(mt):
                state = self._active_state(mt)
                if state is not None:
                    self.placeholder.reset(state)
            for listener in self.listeners:
                listener.on_stall(now, mt)

    def on_seek(self) -> None:
        for mt in list(self._states):
            with self._lock_for(mt):
                self.state_machine.on_seek(self._states[mt])

    def reset(self) -> None:
        self._states.clear()

    def add_listener(self, listener: DecisionEventListener):
        super().add_listener(listener)
