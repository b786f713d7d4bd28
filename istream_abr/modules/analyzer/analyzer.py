import datetime
import io
import json
import logging
import os
import sys
import traceback
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

import matplotlib.pyplot as plt

from istream_abr.config.config import ABRConfig
from istream_abr.core.abr import DecisionEventListener, QualityDecider
from istream_abr.core.module import Module, ModuleOption
from istream_abr.models.abr_objects import SwitchRequest


# 决策记录数据类 - 存储单次码率决策的诊断信息
@dataclass
class DecisionRecord:
    time: float                          # 决策时间
    media_type: str                      # 媒体类型
    state: Optional[str]                 # 决策时的状态
    quality: Optional[int]               # 选择的码率索引，None 表示不切换
    delay_ms: float                      # 建议的请求延迟（毫秒）
    throughput: Optional[float] = None   # 决策使用的吞吐量
    latency: Optional[float] = None      # 平均时延
    buffer_level: Optional[float] = None        # 真实缓冲水位（秒）
    placeholder_buffer: Optional[float] = None  # 占位缓冲（秒）


# 卡顿数据类 - 存储缓冲耗尽的时间
@dataclass
class Stall:
    time: float
    media_type: str


# 决策分析器 - 监听决策引擎，记录每次决策并在清理时保存结果与图表
@ModuleOption("data_collector", requires=[QualityDecider])
class DecisionAnalyzer(Module, DecisionEventListener):
    log = logging.getLogger("DecisionAnalyzer")

    def __init__(self, *, plots_dir: Optional[str] = None):
        """
        Args:
            plots_dir: 图表保存目录，如果为None则使用配置中的目录
        """
        super().__init__()
        self._start_time: Optional[float] = None
        self._decisions: List[DecisionRecord] = []
        self._stalls: List[Stall] = []
        self.plots_dir = plots_dir
        self.dump_results_path: Optional[str] = None
        self.decider_name = ""

    def setup(self, config: ABRConfig, decider: QualityDecider, **kwargs):
        self.config = config
        self.dump_results_path = config.metric_output
        if self.plots_dir is None:
            self.plots_dir = config.plots_dir
        # 记录实际使用的决策策略名称
        self.decider_name = decider.__mod_name__

    def cleanup(self) -> None:
        try:
            self.save(sys.stdout)
            if self.plots_dir is not None and len(self._decisions) > 0:
                self.save_plots()
        except Exception as e:
            traceback.print_exc()
            self.log.error(f"Failed to save analysis : {e}")

    def _relative(self, time: float) -> float:
        if self._start_time is None:
            self._start_time = time
        return time - self._start_time

    @property
    def decisions(self) -> List[DecisionRecord]:
        return self._decisions

    @property
    def stalls(self) -> List[Stall]:
        return self._stalls

    def on_decision(self, time: float, media_type: str, request: SwitchRequest) -> None:
        reason = request.reason
        self._decisions.append(
            DecisionRecord(
                time=self._relative(time),
                media_type=media_type,
                state=reason.get("state"),
                quality=request.quality,
                delay_ms=request.delay_ms,
                throughput=reason.get("throughput"),
                latency=reason.get("latency"),
                buffer_level=reason.get("buffer_level"),
                placeholder_buffer=reason.get("placeholder_buffer"),
            )
        )

    def on_stall(self, time: float, media_type: str) -> None:
        self._stalls.append(Stall(time=self._relative(time), media_type=media_type))

    def summary(self) -> Dict[str, Any]:
        """统计码率切换次数、平均码率索引与卡顿次数"""
        qualities = [d.quality for d in self._decisions if d.quality is not None]

        quality_switches = 0
        last_quality = None
        for quality in qualities:
            if last_quality is not None and quality != last_quality:
                quality_switches += 1
            last_quality = quality

        return {
            "decider": self.decider_name,
            "num_decisions": len(self._decisions),
            "avg_quality": sum(qualities) / len(qualities) if qualities else None,
            "quality_switches": quality_switches,
            "num_stalls": len(self._stalls),
            "total_delay_ms": sum(d.delay_ms for d in self._decisions),
        }

    def save(self, output: io.TextIOBase | TextIO) -> None:
        data = self.summary()
        for key, value in data.items():
            print(f"{key:<20}: {value}", file=output)

        data["decisions"] = list(map(asdict, self._decisions))
        data["stalls"] = list(map(asdict, self._stalls))

        if self.dump_results_path is not None:
            DecisionAnalyzer.save_file(self.dump_results_path, data, self.decider_name)
        else:
            json.dump(data, output, indent=4)

    @staticmethod
    def save_file(path: str, data: dict[str, Any], prefix: str) -> str:
        """
        保存数据到文件，自动处理文件名冲突

        Returns:
            str: 实际写入的文件路径
        """
        os.makedirs(path, exist_ok=True)

        timestamp = datetime.datetime.now().strftime("%Y%m%d-%H%M%S")
        base_filename = f"{prefix or 'abr'}_{timestamp}"
        final_path = os.path.join(path, f"{base_filename}.json")
        # 处理文件名冲突，自动添加数字后缀
        extra_index = 1
        while os.path.exists(final_path):
            final_path = os.path.join(path, f"{base_filename}-{extra_index}.json")
            extra_index += 1

        print(f"Writing results in file {final_path}")
        with open(final_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=4, ensure_ascii=False)
            f.write("\n")
        return final_path

    def save_plots(self):
        """绘制码率索引与有效缓冲随时间的变化"""

        def plot_quality(ax: plt.Axes):
            points = [(d.time, d.quality) for d in self._decisions if d.quality is not None]
            xs = [p[0] for p in points]
            ys = [p[1] for p in points]
            lines = ax.step(xs, ys, color="red", label="Quality", where="post")
            ax.set_xlim(0)
            ax.set_xlabel("Time (second)")
            ax.set_ylabel("Quality index", color="red")
            return (*lines,)

        def plot_bufs(ax: plt.Axes):
            points = [d for d in self._decisions if d.buffer_level is not None]
            xs = [d.time for d in points]
            ys = [d.buffer_level for d in points]
            effective = [d.buffer_level + (d.placeholder_buffer or 0) for d in points]
            line1 = ax.step(xs, ys, color="blue", label="Buffer", where="post")
            line2 = ax.step(xs, effective, color="green", label="Buffer + placeholder", where="post")
            ax.set_ylim(0)
            ax.set_ylabel("Buffer (second)", color="blue")
            # 在卡顿时刻添加竖线标记
            for stall in self._stalls:
                ax.axvline(stall.time, color=(1, 0, 0, 0.3))
            return (*line1, *line2)

        fig, ax1 = plt.subplots()
        ax2: plt.Axes = ax1.twinx()
        lines = plot_quality(ax1) + plot_bufs(ax2)
        labels = [line.get_label() for line in lines]
        fig.legend(lines, labels)

        Path(self.plots_dir).mkdir(parents=True, exist_ok=True)
        output_file = os.path.join(self.plots_dir, "decisions.pdf")
        fig.savefig(output_file)
        plt.close(fig)
        self.log.info(f"Saved plots to {output_file}")
