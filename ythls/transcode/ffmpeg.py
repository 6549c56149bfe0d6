"""
FFmpeg 进程管理模块

负责构建 FFmpeg 命令，启动进程，并把按需切片进程的标准输出以流的形式交给调用方。
"""

import os
import subprocess
import threading
import logging
from collections import deque
from dataclasses import dataclass
from typing import Iterator, List, Optional, Protocol

from ..errors import TranscodeError
from .config import StreamConfig

logger = logging.getLogger(__name__)


def _format_seconds(value: float) -> str:
    """格式化为 FFmpeg 时间参数，如 120 -> "120", 12.5 -> "12.5" """
    return f"{value:.3f}".rstrip("0").rstrip(".")


@dataclass(frozen=True)
class TranscodeRequest:
    """单个切片的转码请求"""

    source_url: str
    start_time: float
    duration: float
    audio_only: bool = False
    label: str = ""


class SegmentStream:
    """与单个 FFmpeg 进程绑定的输出流

    stdout 按块读取，stderr 由后台线程持续读取并记录日志。
    close() 是唯一的清理入口，可以重复调用。
    """

    STDERR_TAIL_LINES = 20

    def __init__(
        self,
        process: subprocess.Popen,
        label: str = "",
        chunk_size: int = 64 * 1024,
        kill_timeout: float = 5.0,
    ):
        self.process = process
        self.label = label or f"pid {process.pid}"
        self.chunk_size = chunk_size
        self.kill_timeout = kill_timeout

        self._stderr_tail = deque(maxlen=self.STDERR_TAIL_LINES)
        self._closed = False
        self._close_lock = threading.Lock()

        self._stderr_thread = None
        if process.stderr is not None:
            self._stderr_thread = threading.Thread(
                target=self._drain_stderr,
                daemon=True,
                name=f"FFmpegStderr-{process.pid}"
            )
            self._stderr_thread.start()

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def returncode(self) -> Optional[int]:
        return self.process.poll()

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)

    def read_chunk(self) -> bytes:
        """读取下一块输出，返回 b"" 表示输出结束

        管道满时 FFmpeg 会阻塞，因此慢客户端的背压会传递到进程。
        """
        stdout = self.process.stdout
        if self._closed or stdout is None:
            return b""
        try:
            return stdout.read1(self.chunk_size)
        except ValueError:
            # stdout 已在 close() 中关闭
            return b""

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.read_chunk()
            if not chunk:
                return
            yield chunk

    def wait(self, timeout: Optional[float] = None) -> int:
        """等待进程退出并返回退出码"""
        return self.process.wait(timeout=timeout)

    def close(self) -> bool:
        """结束进程并释放管道

        先发送 SIGTERM，超时后 SIGKILL。

        Returns:
            进程是否是被本次调用结束的
        """
        with self._close_lock:
            if self._closed:
                return False
            self._closed = True

        stopped = False
        if self.process.poll() is None:
            stopped = True
            try:
                self.process.terminate()
                self.process.wait(timeout=self.kill_timeout)
            except subprocess.TimeoutExpired:
                logger.warning(f"FFmpeg {self.label} ignored SIGTERM, killing")
                self.process.kill()
                self.process.wait()
            except ProcessLookupError:
                # 进程在 poll() 之后已自行退出
                self.process.wait()

        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=1.0)

        for pipe in (self.process.stdout, self.process.stderr):
            if pipe is not None:
                try:
                    pipe.close()
                except OSError as e:
                    logger.debug(f"Error closing FFmpeg pipe for {self.label}: {e}")

        if stopped:
            logger.info(f"Stopped FFmpeg process {self.process.pid} ({self.label})")
        return stopped

    def _drain_stderr(self):
        """读取 stderr 直到进程退出（避免管道写满阻塞进程）"""
        try:
            for raw in iter(self.process.stderr.readline, b""):
                line = raw.decode("utf-8", errors="replace").rstrip()
                if line:
                    self._stderr_tail.append(line)
                    logger.debug(f"FFmpeg[{self.label}]: {line}")
        except (OSError, ValueError) as e:
            logger.debug(f"Stopped reading FFmpeg stderr for {self.label}: {e}")


class TranscoderProtocol(Protocol):
    """转码器接口，便于测试时替换"""

    def transcode(self, request: TranscodeRequest) -> SegmentStream:
        """启动转码并返回输出流，无法启动时抛出 TranscodeError"""


class FFmpegRunner:
    """FFmpeg 进程管理器

    构建 FFmpeg 命令并管理转码进程。
    """

    def __init__(self, config: StreamConfig, ffmpeg_path: Optional[str] = None):
        """初始化 FFmpeg 运行器

        Args:
            config: 切片配置
            ffmpeg_path: ffmpeg 可执行文件路径，默认取配置
        """
        self.config = config
        self.ffmpeg_path = ffmpeg_path or config.ffmpeg_path

    def _input_args(self, source_url: str) -> List[str]:
        """输入相关参数：请求头与断线重连"""
        return [
            "-headers", self.config.get_header_string(),
            "-reconnect", "1",
            "-reconnect_streamed", "1",
            "-reconnect_delay_max", "5",
            # 15 秒无数据视为网络故障
            "-rw_timeout", "15000000",
            "-i", source_url,
        ]

    def _audio_params(self) -> List[str]:
        params = ["-c:a", self.config.audio_encoder]
        if self.config.audio_bitrate:
            params.extend(["-b:a", self.config.audio_bitrate])
        return params

    def build_segment_command(self, request: TranscodeRequest) -> List[str]:
        """构建单个切片的 FFmpeg 命令（输出到 stdout）

        Args:
            request: 转码请求

        Returns:
            FFmpeg 命令列表
        """
        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-nostdin",
            "-loglevel", self.config.loglevel,
            # 输入端 seek（更快）
            "-ss", _format_seconds(request.start_time),
            "-t", _format_seconds(request.duration),
        ]
        cmd.extend(self._input_args(request.source_url))

        if request.audio_only:
            cmd.extend(["-vn"])
            cmd.extend(self._audio_params())
            cmd.extend(["-f", "adts"])
        else:
            cmd.extend(["-c:v", self.config.video_encoder])
            if "x264" in self.config.video_encoder.lower():
                cmd.extend(["-preset", self.config.x264_preset])
            cmd.extend(self._audio_params())
            # 保持切片之间时间戳连续
            cmd.extend(["-output_ts_offset", _format_seconds(request.start_time)])
            cmd.extend(["-f", "mpegts"])

        cmd.append("pipe:1")
        return cmd

    def build_hls_command(self, source_url: str, output_dir: str, segment_duration: int) -> List[str]:
        """构建整片转 HLS 的 FFmpeg 命令

        Args:
            source_url: 视频直链
            output_dir: 输出目录
            segment_duration: 切片时长（秒）

        Returns:
            FFmpeg 命令列表
        """
        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-nostdin",
            "-loglevel", self.config.loglevel,
        ]
        cmd.extend(self._input_args(source_url))
        cmd.extend(["-c:v", self.config.video_encoder])
        if "x264" in self.config.video_encoder.lower():
            cmd.extend(["-preset", self.config.x264_preset])
        cmd.extend(self._audio_params())

        output_prefix = os.path.join(output_dir, "segment")
        cmd.extend([
            "-f", "hls",
            "-hls_playlist_type", "vod",
            "-hls_list_size", "0",
            "-hls_time", str(segment_duration),
            "-hls_segment_type", "mpegts",
            "-hls_segment_filename", f"{output_prefix}%d.ts",
            "-y",
            os.path.join(output_dir, "index.m3u8"),
        ])
        return cmd

    def transcode(self, request: TranscodeRequest) -> SegmentStream:
        """启动切片转码进程

        Raises:
            TranscodeError: 进程无法启动
        """
        command = self.build_segment_command(request)
        logger.info(f"Starting FFmpeg for {request.label}: {self.get_command_line_string(command)}")
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"Failed to start FFmpeg: {e}")
            raise TranscodeError(f"Failed to start FFmpeg: {e}") from e

        return SegmentStream(
            process,
            label=request.label,
            chunk_size=self.config.chunk_size,
            kill_timeout=self.config.kill_timeout,
        )

    def start_process(self, command: List[str], output_dir: str) -> subprocess.Popen:
        """启动后台 FFmpeg 进程（输出写入 output_dir/transcode.log）

        Args:
            command: FFmpeg 命令
            output_dir: 输出目录

        Returns:
            subprocess.Popen 对象

        Raises:
            TranscodeError: 进程无法启动
        """
        try:
            os.makedirs(output_dir, exist_ok=True)
            log_path = os.path.join(output_dir, "transcode.log")
            with open(log_path, "w") as log_file:
                process = subprocess.Popen(
                    command,
                    stdin=subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                )
        except OSError as e:
            logger.error(f"Failed to start FFmpeg: {e}")
            raise TranscodeError(f"Failed to start FFmpeg: {e}") from e

        logger.info(f"Started FFmpeg process with PID {process.pid}")
        return process

    def get_command_line_string(self, command: List[str]) -> str:
        """获取命令行字符串（用于日志记录）

        HTTP 头和带签名的直链参数都做脱敏处理。
        """
        sanitized = []
        previous = None
        for arg in command:
            if previous == "-headers":
                sanitized.append("<headers>")
            elif previous == "-i" and "?" in arg:
                sanitized.append(arg.split("?", 1)[0] + "?<signed>")
            else:
                sanitized.append(arg)
            previous = arg
        return " ".join(sanitized)
