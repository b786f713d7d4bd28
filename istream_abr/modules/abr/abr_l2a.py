import logging
import math
from typing import Optional

import numpy as np

from istream_abr.config.config import ABRConfig, StaticConfig
from istream_abr.core.abr import QualityDecider
from istream_abr.core.module import Module, ModuleOption
from istream_abr.models.abr_objects import DecisionState
from istream_abr.modules.abr.parameters import calculate_optimizer_parameters
from istream_abr.modules.abr.simplex import project_onto_simplex


# [实验] 漂移加惩罚（Lyapunov）码率优化器 - 继承自Module和QualityDecider接口
# 维护单纯形上的权重向量 w 与虚拟队列 Q1，Q1 累积相对目标缓冲的码率欠账
# 算法描述见 http://arxiv.org/abs/1601.06748
@ModuleOption("l2a")
class DriftPlusPenaltyOptimizer(Module, QualityDecider):
    log = logging.getLogger("DriftPlusPenaltyOptimizer")

    def __init__(self, horizon: Optional[str] = None, target_buffer: Optional[str] = None):
        """
        Args:
            horizon: 规划视野（段数），可通过 "l2a:horizon=5" 设置
            target_buffer: 目标缓冲（秒），可通过 "l2a:target_buffer=0.5" 设置
        """
        super().__init__()
        self._horizon = float(horizon) if horizon is not None else None
        self._target_buffer = float(target_buffer) if target_buffer is not None else None
        self.params = calculate_optimizer_parameters(
            self._horizon or StaticConfig.l2a_horizon,
            self._target_buffer if self._target_buffer is not None else StaticConfig.l2a_target_buffer,
        )

    def setup(self, config: ABRConfig, **kwargs):
        static = config.static
        self.params = calculate_optimizer_parameters(
            self._horizon or static.l2a_horizon,
            self._target_buffer if self._target_buffer is not None else static.l2a_target_buffer,
        )

    @staticmethod
    def initialize_weights(state: DecisionState) -> None:
        # 未初始化（或被污染）的优化器状态重新初始化为单纯形上的均匀点
        n = len(state.bitrates)
        state.w = [1.0 / n] * n
        state.Q1 = 0.0

    def _ensure_weights(self, state: DecisionState) -> None:
        w = state.w
        if w is None or len(w) != len(state.bitrates) or not all(math.isfinite(x) for x in w):
            self.log.debug(f"Initializing optimizer weights for {len(state.bitrates)} bitrates")
            self.initialize_weights(state)
        if not math.isfinite(state.Q1) or state.Q1 < 0:
            state.Q1 = 0.0

    def choose_quality(
        self,
        state: DecisionState,
        buffer_level: float,
        throughput: float,
        safe_throughput: float,
        latency: Optional[float],
    ) -> int:
        V = state.last_segment_duration_s
        if V is None or not V > 0 or not throughput > 0 or not math.isfinite(throughput):
            # 段时长或吞吐量不可用时不更新优化器，保持上一次的码率
            self.log.debug(f"Skipping optimizer update, V={V}, throughput={throughput}")
            return state.last_quality

        self._ensure_weights(state)
        p = self.params

        rates = np.array(state.bitrates, dtype=float)
        prev_w = np.array(state.w, dtype=float)
        # 吞吐量上限为最高码率的两倍
        c = min(2 * rates[-1], throughput)

        # 1. 梯度步
        w = prev_w - (rates / c) * (p.VL - V * state.Q1) / (2 * p.alpha)
        self.log.debug(f"w pre-projection: {w}")
        # 2. 投影回单纯形
        w = project_onto_simplex(w)
        diff = w - prev_w
        self.log.debug(f"w post-projection: {w}")

        # 3. 更新虚拟队列
        allocated = float(np.dot(rates, prev_w))
        if allocated < throughput:
            state.Q1 = max(
                0.0,
                state.Q1 + V - V * allocated / c - p.target_buffer / p.horizon - V * float(np.dot(rates, diff)) / c,
            )
        else:
            # 上一次的分配已经超过吞吐量，停止惩罚
            state.Q1 = 0.0

        # 4. 保存权重，作为下一次决策的上一次权重
        state.w = w.tolist()

        # 5. 把分数分配取整到最近的离散码率，距离相同时取最低索引
        target_rate = float(np.dot(w, rates))
        quality = int(np.argmin(np.abs(rates - target_rate)))
        self.log.debug(f"Q1={state.Q1}, target rate={target_rate}, quality={quality}")
        return quality
