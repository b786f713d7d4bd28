import math
from typing import List, Optional, Sequence

from istream_abr.config.config import StaticConfig
from istream_abr.models.abr_objects import ControlParameters, OptimizerParameters


def utilities_from_bitrates(bitrates: Sequence[float]) -> List[float]:
    """
    由码率阶梯计算效用向量 - ln(码率)，整体平移使 utilities[0] == 1
    """
    utilities = [math.log(b) for b in bitrates]
    return [u - utilities[0] + 1 for u in utilities]


def calculate_parameters(
    stable_buffer_time: float,
    bitrates: Sequence[float],
    utilities: Sequence[float],
    static=StaticConfig,
) -> Optional[ControlParameters]:
    """
    计算缓冲占用启发式的控制参数 gp 与 Vp

    得分 (Vp * (utility + gp) - bufferLevel) / bitrate 在以下条件下取得所需的极值：
        Vp * (utilities[0] + gp - 1) == MINIMUM_BUFFER_S
        Vp * (utilities[max] + gp - 1) == bufferTarget
    即在缓冲 = MINIMUM_BUFFER_S 时倾向 bitrates[0]，在缓冲目标处倾向 bitrates[max]
    注意推导依赖 utilities[0] == 1（由 utilities_from_bitrates 的归一化保证）

    Returns:
        Optional[ControlParameters]: 只有一个码率档位（或最大效用在索引 0）时返回 None，
        此时总是使用最低码率
    """
    if len(bitrates) <= 1:
        return None

    # 第一个最大效用的索引
    highest_utility_index = 0
    for i, u in enumerate(utilities):
        if u > utilities[highest_utility_index]:
            highest_utility_index = i
    if highest_utility_index == 0:
        return None

    min_buffer = static.MINIMUM_BUFFER_S
    buffer_time = max(stable_buffer_time, min_buffer + static.MINIMUM_BUFFER_PER_BITRATE_LEVEL_S * len(bitrates))

    gp = (utilities[highest_utility_index] - 1) / (buffer_time / min_buffer - 1)
    Vp = min_buffer / gp
    return ControlParameters(gp=gp, Vp=Vp)


def calculate_optimizer_parameters(horizon: float, target_buffer: float) -> OptimizerParameters:
    """[实验] 漂移加惩罚优化器的步长 alpha 与增长上界 VL"""
    VL = math.pow(horizon, 0.5)
    alpha = max(math.pow(horizon, 1), VL * math.sqrt(horizon))
    return OptimizerParameters(alpha=alpha, VL=VL, horizon=horizon, target_buffer=target_buffer)


def quality_for_bitrate(
    bitrates: Sequence[float],
    bitrate: float,
    latency: Optional[float] = None,
    segment_duration: Optional[float] = None,
) -> int:
    """
    码率阶梯的选择规则 - 返回不超过给定吞吐量的最高码率索引

    如果时延与段时长都已知，先扣除时延造成的"死时间"：
    时延超过段时长时直接返回最低码率，否则吞吐量按 (1 - 时延/段时长) 折算

    Args:
        bitrates: 升序码率阶梯（bps）
        bitrate: 可用吞吐量（bps）
        latency: 平均时延（秒）
        segment_duration: 段时长（秒）
    """
    if latency and segment_duration and math.isfinite(latency):
        if latency > segment_duration:
            return 0
        bitrate = bitrate * (1 - latency / segment_duration)

    for i in range(len(bitrates) - 1, -1, -1):
        if bitrate >= bitrates[i]:
            return i
    return 0
