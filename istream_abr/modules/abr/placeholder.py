from typing import Optional

from istream_abr.config.config import StaticConfig
from istream_abr.models.abr_objects import DecisionState
from istream_abr.modules.abr.abr_bola import max_buffer_level_for_quality, min_buffer_level_for_quality


class PlaceholderBufferTracker:
    """
    占位缓冲跟踪器

    占位缓冲叠加在真实缓冲之上，用来计算码率。两种情况下需要增大它：

    1. 段下载完成后，预期立即收到下一次决策调用。但调用可能被推迟（例如直播时下一个段尚未可用），
       这段延迟不应改变决策，决策只应考虑下载时间。
    2. 没有段下载也可能收到决策调用：宿主对非最高码率的段使用不同的缓冲目标，
       可能因此暂不下载。下一次调用前的额外延迟同样不应影响决策。

    此外，替换段（快速切换）下载完成后并不增长真实缓冲，需要用占位缓冲补偿。
    """

    def __init__(self, static=StaticConfig):
        self.decay = static.PLACEHOLDER_BUFFER_DECAY
        self.min_buffer = static.MINIMUM_BUFFER_S

    def on_decision(self, state: DecisionState, now: float) -> None:
        """稳态决策调用时，补偿非带宽因素造成的延迟"""
        if state.last_segment_finish_time is not None:
            # 补偿下载完成到本次调用之间的延迟，例如直播段可用性、宿主调度
            state.placeholder_buffer += max(0.0, now - state.last_segment_finish_time)
        elif state.last_call_time is not None:
            # 上次调用后没有下载，补偿两次调用之间的延迟
            state.placeholder_buffer += max(0.0, now - state.last_call_time)

        state.last_call_time = now
        state.last_segment_start = None
        state.last_segment_request_time = None
        state.last_segment_finish_time = None

    def on_segment_complete(self, state: DecisionState, buffer_level: float) -> bool:
        """
        新段下载完成时会收到两个通知（段加载完成与请求指标），两者都到齐后调用

        下载段的码率可能低于决策给出的码率（其他规则干预），此时裁剪占位缓冲使决策更稳定；
        该机制也避免了决策为防振荡而不升档时占位缓冲的膨胀

        Returns:
            bool: 两个通知都已到齐并完成处理时返回 True
        """
        if state.last_segment_start is None or state.last_segment_request_time is None:
            return False

        state.placeholder_buffer *= self.decay

        # 找到上一个段对应的最大缓冲，确保占位缓冲不会相对更大
        if state.last_segment_finish_time is not None:
            # 估算发起上一个段请求时的缓冲水位
            buffer_at_last_request = buffer_level + (
                state.last_segment_finish_time - state.last_segment_request_time
            )
            max_effective_buffer = max_buffer_level_for_quality(state, state.last_quality)
            max_placeholder = max(0.0, max_effective_buffer - buffer_at_last_request)
            state.placeholder_buffer = min(max_placeholder, state.placeholder_buffer)

        # 补偿下载了但没有增长缓冲的替换段
        if state.last_segment_was_replacement and state.last_segment_duration_s is not None:
            state.placeholder_buffer += state.last_segment_duration_s

        state.last_segment_start = None
        state.last_segment_request_time = None
        return True

    def apply_pacing(self, state: DecisionState, buffer_level: float, quality: int, top_quality: int) -> float:
        """
        避免用低码率段填满缓冲 - 有效缓冲超过该码率的最大缓冲时，先消耗占位缓冲，再要求宿主暂停

        Returns:
            float: 建议的请求延迟（秒）
        """
        delay = max(0.0, buffer_level + state.placeholder_buffer - max_buffer_level_for_quality(state, quality))

        if delay <= state.placeholder_buffer:
            state.placeholder_buffer -= delay
            return 0.0

        delay -= state.placeholder_buffer
        state.placeholder_buffer = 0.0
        if quality < top_quality:
            return delay
        # 最高码率时由宿主自行决定缓冲填充到多少
        return 0.0

    def on_abandoned(self, state: DecisionState, buffer_level: float) -> None:
        """放弃下载时保守地收缩占位缓冲，只减不增"""
        if state.abr_quality is not None and state.abr_quality > 0:
            # 收缩到恰好选择 abr_quality 而不是 abr_quality-1 的水位
            want_effective_buffer = min_buffer_level_for_quality(state, state.abr_quality)
        else:
            want_effective_buffer = self.min_buffer
        max_placeholder = max(0.0, want_effective_buffer - buffer_level)
        state.placeholder_buffer = min(state.placeholder_buffer, max_placeholder)

    def seed_startup(self, state: DecisionState, buffer_level: float, quality: int) -> None:
        # 启动阶段：使启发式恰好选择 quality
        state.placeholder_buffer = max(0.0, min_buffer_level_for_quality(state, quality) - buffer_level)

    def rescale(self, state: DecisionState, buffer_level: float, old_Vp: float, new_Vp: Optional[float]) -> None:
        """
        缓冲目标改变导致 Vp 改变时修正占位缓冲：
        1. 有效缓冲 == MINIMUM_BUFFER_S（== Vp * gp）处的有效缓冲保持不变
        2. 以第 1 条中的水位为锚点，按 Vp 的比例缩放占位缓冲
        """
        if new_Vp is None or not old_Vp:
            return
        effective_buffer = buffer_level + state.placeholder_buffer
        effective_buffer -= self.min_buffer
        effective_buffer *= new_Vp / old_Vp
        effective_buffer += self.min_buffer
        state.placeholder_buffer = max(0.0, effective_buffer - buffer_level)

    @staticmethod
    def reset(state: DecisionState) -> None:
        state.placeholder_buffer = 0.0
