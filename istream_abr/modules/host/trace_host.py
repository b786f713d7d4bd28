import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import yaml

from istream_abr.config.config import ABRConfig
from istream_abr.core.abr import ABRContext
from istream_abr.modules.abr.engine import DecisionEngine


# 网络周期数据类 - 追踪文件中的一段恒定网络条件
@dataclass
class NetworkPeriod:
    duration: float    # 持续时间（秒）
    bandwidth: float   # 带宽（bps）
    latency: float     # 请求时延（秒）


def load_trace(path: str) -> List[NetworkPeriod]:
    """
    加载网络追踪文件 - [持续时间(秒), 带宽(bps), 时延(秒)] 列表，时延可省略

    Raises:
        Exception: 文件格式不支持
        ValueError: 追踪为空或包含非法周期
    """
    if path.endswith(".yaml") or path.endswith(".yml"):
        with open(path) as f:
            entries = yaml.safe_load(f)
    elif path.endswith(".json"):
        with open(path) as f:
            entries = json.load(f)
    else:
        raise Exception(f"Trace file format not supported. Use JSON or YAML. Used : {path}")
    return parse_trace(entries)


def parse_trace(entries: Sequence[Sequence[float]]) -> List[NetworkPeriod]:
    periods = []
    for entry in entries:
        duration, bandwidth = float(entry[0]), float(entry[1])
        latency = float(entry[2]) if len(entry) > 2 else 0.0
        if duration <= 0:
            # 丢弃非正时长的周期，保证仿真时间总能前进
            continue
        if bandwidth <= 0 or latency < 0:
            raise ValueError(f"Invalid network period: {entry}")
        periods.append(NetworkPeriod(duration, bandwidth, latency))
    if not periods:
        raise ValueError("Network trace is empty")
    return periods


# 轨迹宿主上下文 - 以仿真缓冲和EWMA带宽测量实现 ABRContext
class TraceContext(ABRContext):
    log = logging.getLogger("TraceContext")

    def __init__(self, config: ABRConfig, bitrates: Optional[Dict[str, List[float]]] = None):
        """
        Args:
            config: 配置对象
            bitrates: 媒体类型到码率阶梯的映射，默认只有 "video" 使用 config.bitrates
        """
        self.config = config
        self.bitrates = bitrates if bitrates is not None else {"video": list(config.bitrates)}
        # 仿真时钟（秒）
        self.now = 0.0
        # 每个媒体类型的缓冲水位（秒）
        self.buffer_levels: Dict[str, float] = {mt: 0.0 for mt in self.bitrates}
        # 平滑因子，用于带宽估计的指数移动平均
        self.smooth_factor = config.static.smoothing_factor
        self.safety_factor = config.static.bandwidth_safety_factor
        # 带宽与时延估计，收到第一个样本前未知
        self._bw: Optional[float] = None
        self._latency: Optional[float] = None
        self._stable_buffer_time = config.stable_buffer_time

    def clock(self) -> float:
        return self.now

    def on_throughput_sample(self, bandwidth: float, latency: float) -> None:
        # 指数移动平均：new_bw = old_bw * smooth_factor + curr_bw * (1 - smooth_factor)
        if self._bw is None:
            self._bw = bandwidth
            self._latency = latency
        else:
            self._bw = self._bw * self.smooth_factor + bandwidth * (1 - self.smooth_factor)
            self._latency = self._latency * self.smooth_factor + latency * (1 - self.smooth_factor)

    def set_stable_buffer_time(self, stable_buffer_time: float) -> None:
        self._stable_buffer_time = stable_buffer_time

    def bitrate_list(self, media_type: str) -> Optional[List[float]]:
        return self.bitrates.get(media_type)

    def stable_buffer_time(self) -> float:
        return self._stable_buffer_time

    def buffer_level(self, media_type: str) -> float:
        return self.buffer_levels.get(media_type, 0.0)

    def average_throughput(self, media_type: str) -> Optional[float]:
        return self._bw

    def safe_average_throughput(self, media_type: str) -> Optional[float]:
        return None if self._bw is None else self._bw * self.safety_factor

    def average_latency(self, media_type: str) -> Optional[float]:
        return self._latency

    def top_quality_index(self, media_type: str) -> int:
        return len(self.bitrates[media_type]) - 1


class TraceSimulator:
    """
    轨迹驱动的仿真播放器 - 只有网络下载与等待会推进时间，播放缓冲同步消耗相同的时长
    """
    log = logging.getLogger("TraceSimulator")

    def __init__(
        self,
        config: ABRConfig,
        context: TraceContext,
        engine: DecisionEngine,
        trace: List[NetworkPeriod],
        media_type: str = "video",
    ):
        self.config = config
        self.context = context
        self.engine = engine
        self.trace = trace
        self.media_type = media_type

        self._idx = 0
        self._time_to_next = trace[0].duration

        self.playing = False
        self.stalled = False
        self.total_stall = 0.0
        self.qualities: List[Optional[int]] = []

    def _advance(self, dt: float) -> None:
        """推进时钟与网络周期，同时消耗播放缓冲"""
        while dt > 0:
            if self._time_to_next <= 0:
                self._idx = (self._idx + 1) % len(self.trace)
                self._time_to_next = self.trace[self._idx].duration
                continue
            step = min(dt, self._time_to_next)
            self._time_to_next -= step
            self.context.now += step
            self._drain(step)
            dt -= step

    def _drain(self, dt: float) -> None:
        if not self.playing:
            return
        level = self.context.buffer_levels[self.media_type]
        if level >= dt:
            self.context.buffer_levels[self.media_type] = level - dt
            return
        self.context.buffer_levels[self.media_type] = 0.0
        self.total_stall += dt - level
        if not self.stalled:
            self.stalled = True
            self.log.info(f"[{self.context.now:.3f}] Buffer empty")
            self.engine.on_buffer_empty(self.media_type)

    def _download(self, bits: float) -> float:
        """下载指定比特数，返回包含时延在内的下载耗时"""
        start = self.context.now
        self._advance(self.trace[self._idx].latency)
        while bits > 0:
            if self._time_to_next <= 0:
                self._idx = (self._idx + 1) % len(self.trace)
                self._time_to_next = self.trace[self._idx].duration
            bw = self.trace[self._idx].bandwidth
            can = bw * self._time_to_next
            if bits <= can:
                self._advance(bits / bw)
                bits = 0
            else:
                bits -= can
                self._advance(self._time_to_next)
        return self.context.now - start

    def _wait_for_buffer_room(self) -> None:
        # 缓冲超过稳定缓冲目标时暂停请求，等待播放消耗
        level = self.context.buffer_levels[self.media_type]
        target = self.context.stable_buffer_time()
        if self.playing and level > target:
            self._advance(level - target)

    def run(self) -> Dict[str, float]:
        bitrates = self.context.bitrate_list(self.media_type)
        seg_duration = self.config.segment_duration
        quality = 0

        for index in range(self.config.num_segments):
            self._wait_for_buffer_room()

            request = self.engine.decide(self.media_type)
            if request.quality is not None:
                quality = request.quality
            if request.delay_ms > 0:
                self._advance(request.delay_ms / 1000)

            request_time = self.context.now
            latency = self.trace[self._idx].latency
            download_time = self._download(bitrates[quality] * seg_duration)
            finish_time = self.context.now

            self.context.on_throughput_sample(bitrates[quality] * seg_duration / download_time, latency)
            self.context.buffer_levels[self.media_type] += seg_duration
            self.playing = True
            self.stalled = False
            self.qualities.append(quality)

            self.engine.on_metric_added(self.media_type, request_time, finish_time)
            self.engine.on_segment_loaded(self.media_type, index * seg_duration, seg_duration, quality)

        self.log.info(f"Simulated {len(self.qualities)} segments, total stall {self.total_stall:.3f}s")
        return {
            "segments": len(self.qualities),
            "avg_bitrate": sum(bitrates[q] for q in self.qualities) / max(1, len(self.qualities)),
            "total_stall": self.total_stall,
            "end_time": self.context.now,
        }
