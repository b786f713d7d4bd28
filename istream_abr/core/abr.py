from abc import ABC, abstractmethod
from typing import List, Optional

from istream_abr.core.module import ModuleInterface
from istream_abr.models.abr_objects import DecisionState, SwitchRequest


class ABRContext(ABC):
    """
    决策引擎的外部协作者接口 - 由宿主一次性完整实现
    所有方法都必须立即返回已经计算好的值，不能阻塞在 I/O 上
    """

    @abstractmethod
    def bitrate_list(self, media_type: str) -> Optional[List[float]]:
        """
        返回媒体类型的码率阶梯（bps，升序）；清单尚未就绪时返回 None
        """
        pass

    @abstractmethod
    def stable_buffer_time(self) -> float:
        """当前配置的稳定缓冲目标（秒），可在播放过程中改变"""
        pass

    @abstractmethod
    def buffer_level(self, media_type: str) -> float:
        """当前真实缓冲水位（秒）"""
        pass

    @abstractmethod
    def average_throughput(self, media_type: str) -> Optional[float]:
        """
        平滑后的吞吐量估计（bps）；样本不足时返回 None 或 NaN
        """
        pass

    @abstractmethod
    def safe_average_throughput(self, media_type: str) -> Optional[float]:
        """保守的"安全"吞吐量估计（bps）"""
        pass

    @abstractmethod
    def average_latency(self, media_type: str) -> Optional[float]:
        """平均请求时延（秒）"""
        pass

    @abstractmethod
    def top_quality_index(self, media_type: str) -> int:
        """宿主允许的最高码率索引"""
        pass


class QualityDecider(ModuleInterface):
    """
    稳态码率决策策略接口
    缓冲占用启发式与漂移加惩罚优化器是该接口的两个互斥实现，在配置阶段选择
    """

    @abstractmethod
    def choose_quality(
        self,
        state: DecisionState,
        buffer_level: float,
        throughput: float,
        safe_throughput: float,
        latency: Optional[float],
    ) -> int:
        """
        为下一个段选择码率索引

        Args:
            state: 当前媒体类型的决策状态（占位缓冲已更新）
            buffer_level: 真实缓冲水位（秒）
            throughput: 平滑吞吐量（bps）
            safe_throughput: 安全吞吐量（bps）
            latency: 平均时延（秒）

        Returns:
            int: 码率阶梯中的索引
        """
        pass


class DecisionEventListener(ABC):
    def on_decision(self, time: float, media_type: str, request: SwitchRequest) -> None:
        """每次决策完成后由决策引擎调用"""
        pass

    def on_stall(self, time: float, media_type: str) -> None:
        """宿主报告缓冲耗尽（卡顿）时调用"""
        pass
