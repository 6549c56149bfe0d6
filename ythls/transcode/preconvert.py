"""
整片预转码任务管理器

负责预转码任务的生命周期管理：
- 创建和获取任务（同一视频同一清晰度共用一个任务）
- 启动和停止 FFmpeg 进程
- 监控进程退出与超时
"""

import hashlib
import os
import re
import threading
import time
import logging
import subprocess
from typing import Dict, List, Optional, Tuple, Any

from ..errors import ConversionError, NoSuitableFormat
from ..resolver.service import FormatResolver, validate_video_id
from .config import PreconvertConfig
from .ffmpeg import FFmpegRunner
from .task import ConvertJob, JobStatus

logger = logging.getLogger(__name__)

QUALITY_PATTERN = re.compile(r"^\w{1,16}$")

# 只允许访问 FFmpeg 生成的播放列表和切片
OUTPUT_FILENAME_PATTERN = re.compile(r"^[\w-]+\.(m3u8|ts)$")


def validate_quality(quality: str) -> str:
    if not isinstance(quality, str) or not QUALITY_PATTERN.match(quality):
        raise ConversionError("Invalid quality", status_code=400)
    return quality


class PreconvertManager:
    """预转码任务管理器"""

    MONITOR_INTERVAL = 1.0

    def __init__(self, resolver: FormatResolver, ffmpeg_runner: FFmpegRunner, config: PreconvertConfig):
        """初始化预转码管理器

        Args:
            resolver: 格式解析服务
            ffmpeg_runner: FFmpeg 运行器
            config: 预转码配置
        """
        self.resolver = resolver
        self.ffmpeg_runner = ffmpeg_runner
        self.config = config
        self.jobs: Dict[str, ConvertJob] = {}
        self.lock = threading.RLock()

    def get_job(self, video_id: str, quality: str) -> Optional[ConvertJob]:
        """获取预转码任务

        Args:
            video_id: YouTube 视频 ID
            quality: 清晰度

        Returns:
            ConvertJob 对象，不存在返回 None
        """
        with self.lock:
            return self.jobs.get(self._generate_job_id(video_id, quality))

    def start_job(self, video_id: str, quality: str) -> Tuple[ConvertJob, bool]:
        """启动预转码任务

        同一视频同一清晰度已有活跃或已完成的任务时直接返回该任务。

        Args:
            video_id: YouTube 视频 ID
            quality: 清晰度，如 "720p"

        Returns:
            (ConvertJob, 是否新建)

        Raises:
            InvalidIdentifier, UpstreamError, TranscodeError
            NoSuitableFormat: 没有该清晰度的合并音视频格式
            ConversionError: 预转码未启用或并发数已满
        """
        if not self.config.enabled:
            raise ConversionError("Pre-conversion is disabled", status_code=404)
        validate_video_id(video_id)
        validate_quality(quality)

        job_id = self._generate_job_id(video_id, quality)
        with self.lock:
            existing = self.jobs.get(job_id)
            if existing and (existing.is_active() or existing.status == JobStatus.COMPLETED):
                return existing, False
            if self._get_active_count() >= self.config.max_concurrent_jobs:
                raise ConversionError("Maximum concurrent conversions reached", status_code=503)

            job = ConvertJob(
                job_id=job_id,
                video_id=video_id,
                quality=quality,
                output_dir=self.config.get_output_dir(video_id, quality),
                segment_duration=self.config.segment_duration,
            )
            # 先占位，避免并发请求重复启动
            self.jobs[job_id] = job

        try:
            resolved, media_format = self.resolver.resolve_fresh_format(video_id, quality=quality)
            if quality not in media_format.quality_label:
                # 输出目录按清晰度命名，不能用回退格式冒充
                raise NoSuitableFormat(f"Format not available: {quality}")
            job.title = resolved.title
            job.duration = resolved.duration_seconds

            command = self.ffmpeg_runner.build_hls_command(
                media_format.direct_url, job.output_dir, self.config.segment_duration
            )
            logger.info(f"Starting pre-conversion {job_id}: {self.ffmpeg_runner.get_command_line_string(command)}")
            job.process = self.ffmpeg_runner.start_process(command, job.output_dir)
        except Exception as e:
            job.mark_error(str(e))
            raise

        with self.lock:
            stopped = not job.is_active()
            if not stopped:
                job.mark_running()
        if stopped:
            # 启动期间任务已被停止
            self._stop_job_process(job, job.error or "manual")
            return job, True

        monitor_thread = threading.Thread(
            target=self._monitor_job,
            args=(job,),
            daemon=True,
            name=f"PreconvertMonitor-{job_id[:8]}"
        )
        monitor_thread.start()
        return job, True

    def stop_job(self, video_id: str, quality: str, reason: str = "manual") -> bool:
        """停止预转码任务

        Returns:
            是否找到任务
        """
        job = self.get_job(video_id, quality)
        if not job:
            return False
        self._stop_job_process(job, reason)
        return True

    def stop_all(self):
        """停止所有活跃任务"""
        with self.lock:
            jobs = list(self.jobs.values())
        for job in jobs:
            if job.is_active():
                self._stop_job_process(job, "shutdown")

    def get_all_jobs(self) -> List[Dict[str, Any]]:
        with self.lock:
            return [job.to_dict() for job in self.jobs.values()]

    def get_active_count(self) -> int:
        with self.lock:
            return self._get_active_count()

    def resolve_output_file(self, video_id: str, quality: str, filename: str) -> Optional[str]:
        """返回预转码输出文件的目录，文件不存在返回 None"""
        validate_video_id(video_id)
        validate_quality(quality)
        if not OUTPUT_FILENAME_PATTERN.match(filename or ""):
            return None
        output_dir = self.config.get_output_dir(video_id, quality)
        if os.path.isfile(os.path.join(output_dir, filename)):
            return output_dir
        return None

    def _stop_job_process(self, job: ConvertJob, reason: str = "manual"):
        """停止任务的 FFmpeg 进程

        先标记状态再结束进程，监控线程不会把被停止的任务记为错误。

        Args:
            job: 预转码任务
            reason: 停止原因
        """
        with self.lock:
            if job.is_active():
                job.mark_stopped(reason)

        process = job.process
        if process and process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
            logger.info(f"Stopped FFmpeg process for job {job.job_id} ({reason})")

    def _monitor_job(self, job: ConvertJob):
        """监控预转码任务，直到进程退出或超时

        Args:
            job: 预转码任务
        """
        while job.is_active():
            return_code = job.process.poll() if job.process else None
            if return_code is not None:
                with self.lock:
                    if not job.is_active():
                        break
                    if return_code == 0:
                        job.mark_completed()
                    else:
                        job.mark_error(f"FFmpeg exited with code {return_code}")

                if return_code == 0:
                    logger.info(f"Job {job.job_id} completed in {job.get_elapsed_time():.1f}s")
                else:
                    logger.error(f"Job {job.job_id} failed with code {return_code}")
                break

            if job.is_timeout(self.config.job_timeout):
                logger.info(f"Job {job.job_id} timed out, stopping")
                self._stop_job_process(job, "timeout")
                break

            time.sleep(self.MONITOR_INTERVAL)

    def _get_active_count(self) -> int:
        return sum(1 for job in self.jobs.values() if job.is_active())

    def _generate_job_id(self, video_id: str, quality: str) -> str:
        """生成任务 ID（同一视频同一清晰度始终相同）"""
        hash_str = hashlib.md5(f"{video_id}:{quality}".encode()).hexdigest()[:16]
        return f"job_{hash_str}"
