"""
转码配置模块

定义按需切片与预转码相关的配置参数和默认值。
"""

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/118 Safari/537.36"
)


@dataclass
class StreamConfig:
    """按需切片配置

    从全局配置的 stream 节读取参数，提供默认值。
    """

    # 切片时长（秒），所有按需切片共用
    segment_duration: int = 10

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    loglevel: str = "error"

    # 编码器配置
    video_encoder: str = "libx264"
    x264_preset: str = "veryfast"
    audio_encoder: str = "aac"
    audio_bitrate: Optional[str] = None  # 如 "128k"

    # 请求直链时伪装的来源
    user_agent: str = DEFAULT_USER_AGENT
    referer: str = "https://www.youtube.com/"
    origin: str = "https://www.youtube.com/"

    # 输出读取块大小（字节）
    chunk_size: int = 64 * 1024

    # terminate 后等待进程退出的时间，超时则 kill
    kill_timeout: float = 5.0

    @classmethod
    def from_app_config(cls, app_config: dict) -> 'StreamConfig':
        """从应用配置创建 StreamConfig

        Args:
            app_config: 全局配置字典

        Returns:
            StreamConfig 实例
        """
        stream_config = (app_config or {}).get("stream", {}) or {}
        config = cls()

        if "segment_duration" in stream_config:
            config.segment_duration = int(stream_config["segment_duration"] or 10)
        if stream_config.get("ffmpeg_path"):
            config.ffmpeg_path = stream_config["ffmpeg_path"]
        if stream_config.get("loglevel"):
            config.loglevel = stream_config["loglevel"]

        if stream_config.get("video_encoder"):
            config.video_encoder = stream_config["video_encoder"]
        if stream_config.get("x264_preset"):
            config.x264_preset = stream_config["x264_preset"]
        if stream_config.get("audio_encoder"):
            config.audio_encoder = stream_config["audio_encoder"]
        if "audio_bitrate" in stream_config:
            config.audio_bitrate = stream_config["audio_bitrate"] or None

        if stream_config.get("user_agent"):
            config.user_agent = stream_config["user_agent"]
        if stream_config.get("referer"):
            config.referer = stream_config["referer"]
        if stream_config.get("origin"):
            config.origin = stream_config["origin"]

        if "chunk_size" in stream_config:
            config.chunk_size = int(stream_config["chunk_size"] or 64 * 1024)
        if "kill_timeout" in stream_config:
            config.kill_timeout = float(stream_config["kill_timeout"] or 5)

        return config

    def get_header_string(self) -> str:
        """构建 FFmpeg -headers 参数（CRLF 分隔，CRLF 结尾）"""
        headers = [
            f"User-Agent: {self.user_agent}",
            f"Referer: {self.referer}",
            f"Origin: {self.origin}",
        ]
        return "\r\n".join(headers) + "\r\n"


@dataclass
class PreconvertConfig:
    """整片预转码配置"""

    enabled: bool = True
    work_dir: str = "data/hls"
    segment_duration: int = 6
    max_concurrent_jobs: int = 2
    job_timeout: int = 3600  # 任务超时时间（秒）

    @classmethod
    def from_app_config(cls, app_config: dict) -> 'PreconvertConfig':
        section = (app_config or {}).get("preconvert", {}) or {}
        config = cls()

        if "enabled" in section:
            config.enabled = bool(section["enabled"])
        if section.get("work_dir"):
            config.work_dir = section["work_dir"]
        if "segment_duration" in section:
            config.segment_duration = int(section["segment_duration"] or 6)
        if "max_concurrent_jobs" in section:
            config.max_concurrent_jobs = int(section["max_concurrent_jobs"] or 2)
        if "job_timeout" in section:
            config.job_timeout = int(section["job_timeout"] or 3600)

        return config

    def get_output_dir(self, video_id: str, quality: str) -> str:
        """获取预转码输出目录

        Args:
            video_id: YouTube 视频 ID
            quality: 清晰度

        Returns:
            输出目录路径
        """
        return os.path.join(self.work_dir, video_id, quality)
