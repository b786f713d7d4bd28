import logging
from typing import Optional

from istream_abr.config.config import ABRConfig
from istream_abr.core.abr import QualityDecider
from istream_abr.core.module import Module, ModuleOption
from istream_abr.models.abr_objects import DecisionState
from istream_abr.modules.abr.parameters import quality_for_bitrate


def quality_from_buffer_level(state: DecisionState, buffer_level: float) -> int:
    """
    缓冲占用启发式的核心 - 选择使得分
        (Vp * (utility + gp) - bufferLevel) / bitrate
    最大的码率索引；从低到高扫描，得分相同时保留较低的码率
    """
    quality = 0
    score = None
    for i in range(len(state.bitrates)):
        s = (state.Vp * (state.utilities[i] + state.gp) - buffer_level) / state.bitrates[i]
        if score is None or s > score:
            score = s
            quality = i
    return quality


def max_buffer_level_for_quality(state: DecisionState, quality: int) -> float:
    # 宁愿以该码率下载也不等待的最大缓冲水位
    return state.Vp * (state.utilities[quality] + state.gp)


def min_buffer_level_for_quality(state: DecisionState, quality: int) -> float:
    """
    使启发式选择 quality 而不是任何更低码率的最小缓冲水位
    对每个效用严格更低的低码率 i，求两条得分直线的交点，取其中的最大值
    """
    q_bitrate = state.bitrates[quality]
    q_utility = state.utilities[quality]

    level_min = 0.0
    for i in range(quality - 1, -1, -1):
        # 效用更高的低码率不参与比较
        if state.utilities[i] < q_utility:
            i_bitrate = state.bitrates[i]
            i_utility = state.utilities[i]
            level = state.Vp * (state.gp + (q_bitrate * i_utility - i_bitrate * q_utility) / (q_bitrate - i_bitrate))
            level_min = max(level_min, level)
    return level_min


# 基于缓冲占用的码率决策器 - 继承自Module和QualityDecider接口
# 在稳态下根据 真实缓冲 + 占位缓冲 选择码率，并抑制不可持续的升档
@ModuleOption("bola")
class BufferOccupancyDecider(Module, QualityDecider):
    log = logging.getLogger("BufferOccupancyDecider")

    def __init__(self):
        super().__init__()

    def setup(self, config: ABRConfig, **kwargs):
        self.config = config

    def choose_quality(
        self,
        state: DecisionState,
        buffer_level: float,
        throughput: float,
        safe_throughput: float,
        latency: Optional[float],
    ) -> int:
        # 占位缓冲叠加到真实缓冲上计算码率
        # 这可能使决策偏乐观：真实缓冲耗尽时占位缓冲无法阻止卡顿
        quality = quality_from_buffer_level(state, buffer_level + state.placeholder_buffer)

        # 避免码率振荡：当带宽介于两个码率档位之间时，停留在较低档位
        quality_for_throughput = quality_for_bitrate(
            state.bitrates, safe_throughput, latency, state.last_segment_duration_s
        )
        if quality > state.last_quality and quality > quality_for_throughput:
            # 只在试图升档到不可持续的码率时干预，且不低于上一次的码率
            self.log.debug(
                f"Clamping quality {quality} -> {max(quality_for_throughput, state.last_quality)}, "
                f"throughput quality={quality_for_throughput}, last quality={state.last_quality}"
            )
            quality = max(quality_for_throughput, state.last_quality)

        return quality
