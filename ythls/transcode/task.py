"""
转码任务数据模型

SegmentTask：单个按需切片请求的状态。
ConvertJob：整片预转码任务的状态。
"""

import time
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any
from subprocess import Popen


class SegmentState(Enum):
    """切片请求状态

    IDLE -> RESOLVING -> (REFRESHING) -> TRANSCODING -> COMPLETED / ABORTED / FAILED
    """
    IDLE = "idle"
    RESOLVING = "resolving"
    REFRESHING = "refreshing"
    TRANSCODING = "transcoding"
    COMPLETED = "completed"
    ABORTED = "aborted"    # 客户端断开
    FAILED = "failed"      # 启动失败或非零退出


FINAL_SEGMENT_STATES = (SegmentState.COMPLETED, SegmentState.ABORTED, SegmentState.FAILED)


@dataclass
class SegmentTask:
    """按需切片请求"""

    video_id: str
    segment_index: int
    quality: Optional[str] = None
    audio_only: bool = False
    segment_duration: int = 10

    state: SegmentState = SegmentState.IDLE
    error: Optional[str] = None
    bytes_sent: int = 0

    created_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def start_offset(self) -> float:
        """切片起始时间（秒）"""
        return self.segment_index * self.segment_duration

    @property
    def label(self) -> str:
        track = "audio" if self.audio_only else (self.quality or "auto")
        return f"{self.video_id}/{track}#{self.segment_index}"

    def _transition(self, state: SegmentState):
        # 结束状态不可再变更
        if self.is_finished():
            return
        self.state = state
        if state in FINAL_SEGMENT_STATES:
            self.finished_at = time.time()

    def mark_resolving(self):
        self._transition(SegmentState.RESOLVING)

    def mark_refreshing(self):
        self._transition(SegmentState.REFRESHING)

    def mark_transcoding(self):
        self._transition(SegmentState.TRANSCODING)

    def mark_completed(self):
        self._transition(SegmentState.COMPLETED)

    def mark_aborted(self):
        self._transition(SegmentState.ABORTED)

    def mark_failed(self, error: str):
        if not self.is_finished():
            self.error = error
        self._transition(SegmentState.FAILED)

    def is_finished(self) -> bool:
        return self.state in FINAL_SEGMENT_STATES


class JobStatus(Enum):
    """预转码任务状态"""
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    STOPPED = "stopped"


@dataclass
class ConvertJob:
    """整片预转码任务

    包含转码任务的所有状态信息。
    """

    # 基本信息
    job_id: str
    video_id: str
    quality: str
    title: str = ""
    duration: float = 0.0

    # 输出信息
    output_dir: str = ""
    segment_duration: int = 6

    # 状态信息
    status: JobStatus = JobStatus.STARTING
    error: Optional[str] = None

    # 进程信息
    process: Optional[Popen] = None

    # 时间戳
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None

    def mark_running(self):
        """标记为运行中"""
        self.status = JobStatus.RUNNING
        self.updated_at = time.time()
        if self.started_at is None:
            self.started_at = time.time()

    def mark_completed(self):
        """标记为已完成"""
        self.status = JobStatus.COMPLETED
        self.updated_at = time.time()
        self.completed_at = time.time()

    def mark_error(self, error: str):
        """标记为错误

        Args:
            error: 错误信息
        """
        self.status = JobStatus.ERROR
        self.error = error
        self.updated_at = time.time()
        self.completed_at = time.time()

    def mark_stopped(self, reason: str = "manual"):
        """标记为已停止

        Args:
            reason: 停止原因
        """
        self.status = JobStatus.STOPPED
        self.error = reason
        self.updated_at = time.time()
        self.completed_at = time.time()

    def is_active(self) -> bool:
        """判断任务是否活跃（正在运行或启动中）"""
        return self.status in (JobStatus.STARTING, JobStatus.RUNNING)

    def is_timeout(self, timeout_seconds: int = 3600) -> bool:
        """判断任务是否超时

        Args:
            timeout_seconds: 超时时间（秒）

        Returns:
            是否超时
        """
        if not self.is_active():
            return False
        since = self.started_at or self.created_at
        return (time.time() - since) > timeout_seconds

    def get_elapsed_time(self) -> float:
        """获取任务已运行时间（秒）"""
        if self.started_at is None:
            return 0
        end_time = self.completed_at or time.time()
        return end_time - self.started_at

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典（用于 API 响应）"""
        result = {
            "id": self.job_id,
            "video_id": self.video_id,
            "quality": self.quality,
            "title": self.title,
            "status": self.status.value,
            "duration": self.duration,
            "segment_duration": self.segment_duration,
            "playlist_url": f"/hls/{self.video_id}/{self.quality}/index.m3u8",
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "elapsed": round(self.get_elapsed_time(), 3),
        }

        if self.started_at:
            result["started_at"] = self.started_at
        if self.completed_at:
            result["completed_at"] = self.completed_at
        if self.error:
            result["error"] = self.error

        return result
