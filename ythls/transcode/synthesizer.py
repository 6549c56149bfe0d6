"""
按需切片合成

每个切片请求对应一个 FFmpeg 进程，进程的生命周期与 HTTP 响应绑定：
响应结束（正常完成或客户端断开）时通过 SegmentJob.close() 统一清理。
"""

import re
import subprocess
import logging
from typing import Iterator, Optional, Union

from ..errors import InvalidSegmentIndex, StreamError, TranscodeError
from ..resolver.service import FormatResolver, validate_video_id
from .config import StreamConfig
from .ffmpeg import SegmentStream, TranscodeRequest, TranscoderProtocol
from .task import SegmentTask

logger = logging.getLogger(__name__)

SEGMENT_INDEX_PATTERN = re.compile(r"^\d+$")


def parse_segment_index(value: Union[str, int]) -> int:
    """解析切片编号

    Raises:
        InvalidSegmentIndex: 负数或非数字
    """
    if isinstance(value, bool):
        raise InvalidSegmentIndex("Invalid segment index")
    if isinstance(value, int):
        if value < 0:
            raise InvalidSegmentIndex("Invalid segment index")
        return value
    if not isinstance(value, str) or not SEGMENT_INDEX_PATTERN.match(value):
        raise InvalidSegmentIndex("Invalid segment index")
    return int(value)


class SegmentJob:
    """一次切片请求：任务状态 + FFmpeg 输出流"""

    def __init__(self, task: SegmentTask, stream: SegmentStream, first_chunk: bytes = b""):
        self.task = task
        self.stream = stream
        self._first_chunk = first_chunk

    def iter_bytes(self) -> Iterator[bytes]:
        """逐块产出切片数据

        生成器被关闭（客户端断开）时在 finally 中结束进程。
        """
        try:
            if self._first_chunk:
                chunk, self._first_chunk = self._first_chunk, b""
                self.task.bytes_sent += len(chunk)
                yield chunk

            for chunk in self.stream:
                self.task.bytes_sent += len(chunk)
                yield chunk

            self._finish()
        finally:
            self.close()

    def _finish(self):
        """stdout 结束后检查退出码"""
        try:
            returncode = self.stream.wait(timeout=self.stream.kill_timeout)
        except subprocess.TimeoutExpired:
            self.task.mark_failed("FFmpeg did not exit after closing its output")
            logger.error(f"FFmpeg for {self.task.label} did not exit after EOF")
            return

        if returncode == 0:
            self.task.mark_completed()
            logger.info(f"Segment {self.task.label} completed ({self.task.bytes_sent} bytes)")
            return

        # 响应已经开始发送，只能记录错误
        message = f"FFmpeg exited with code {returncode}"
        self.task.mark_failed(message)
        logger.error(
            f"Segment {self.task.label} failed after {self.task.bytes_sent} bytes: {message}\n"
            f"{self.stream.stderr_tail}"
        )

    def close(self):
        """结束进程（可重复调用）"""
        stopped = self.stream.close()
        if not self.task.is_finished():
            self.task.mark_aborted()
            if stopped:
                logger.info(f"Client disconnected from {self.task.label} after {self.task.bytes_sent} bytes")


class SegmentSynthesizer:
    """按需切片合成器"""

    def __init__(
        self,
        resolver: FormatResolver,
        transcoder: TranscoderProtocol,
        config: Optional[StreamConfig] = None,
    ):
        """初始化切片合成器

        Args:
            resolver: 格式解析服务（共享缓存）
            transcoder: 转码器，默认实现为 FFmpegRunner
            config: 切片配置
        """
        self.resolver = resolver
        self.transcoder = transcoder
        self.config = config or StreamConfig()

    @property
    def segment_duration(self) -> int:
        return self.config.segment_duration

    def synthesize(
        self,
        video_id: str,
        segment_index: Union[str, int],
        quality: Optional[str] = None,
        audio_only: bool = False,
    ) -> SegmentJob:
        """启动切片转码，返回可流式读取的 SegmentJob

        在返回之前读取第一块输出：进程在输出任何数据前失败时抛出 TranscodeError，
        此时还可以返回 JSON 错误。

        Args:
            video_id: YouTube 视频 ID
            segment_index: 切片编号
            quality: 清晰度（视频切片）
            audio_only: 是否为纯音频切片

        Returns:
            SegmentJob

        Raises:
            InvalidIdentifier, InvalidSegmentIndex, UpstreamError,
            NoSuitableFormat, TranscodeError
        """
        validate_video_id(video_id)
        index = parse_segment_index(segment_index)

        task = SegmentTask(
            video_id=video_id,
            segment_index=index,
            quality=None if audio_only else quality,
            audio_only=audio_only,
            segment_duration=self.segment_duration,
        )

        try:
            task.mark_resolving()
            resolved, media_format = self.resolver.resolve_fresh_format(
                video_id,
                quality=quality,
                audio_only=audio_only,
                on_refresh=task.mark_refreshing,
            )

            if 0 < resolved.duration_seconds <= task.start_offset:
                raise InvalidSegmentIndex(
                    f"Segment {index} is beyond the end of the video", status_code=404
                )

            task.mark_transcoding()
            stream = self.transcoder.transcode(TranscodeRequest(
                source_url=media_format.direct_url,
                start_time=task.start_offset,
                duration=self.segment_duration,
                audio_only=audio_only,
                label=task.label,
            ))
        except StreamError as e:
            task.mark_failed(str(e))
            raise

        first_chunk = stream.read_chunk()
        if not first_chunk:
            self._check_empty_output(task, stream)

        return SegmentJob(task, stream, first_chunk)

    def _check_empty_output(self, task: SegmentTask, stream: SegmentStream):
        """进程没有任何输出时根据退出码决定是否报错"""
        try:
            returncode = stream.wait(timeout=stream.kill_timeout)
        except subprocess.TimeoutExpired:
            returncode = None

        if returncode == 0:
            return

        stream.close()
        message = f"FFmpeg exited with code {returncode}" if returncode is not None else "FFmpeg produced no output"
        task.mark_failed(message)
        logger.error(f"Segment {task.label} failed: {message}\n{stream.stderr_tail}")
        raise TranscodeError(message)
