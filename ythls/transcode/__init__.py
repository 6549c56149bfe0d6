"""
HLS 转码模块

把 YouTube 直链包装为 HLS 点播流。

核心特性：
- 服务端动态生成 m3u8 播放列表（无需预先下载视频）
- 每个切片请求启动一个 FFmpeg 进程，输出直接流式返回
- 客户端断开时立即结束对应的 FFmpeg 进程
- 可选的整片预转码，输出标准 HLS 文件
"""

from .config import StreamConfig, PreconvertConfig
from .task import SegmentTask, SegmentState, ConvertJob, JobStatus
from .playlist import PlaylistGenerator
from .ffmpeg import FFmpegRunner, SegmentStream, TranscodeRequest, TranscoderProtocol
from .synthesizer import SegmentSynthesizer, SegmentJob, parse_segment_index
from .preconvert import PreconvertManager

__all__ = [
    'StreamConfig',
    'PreconvertConfig',
    'SegmentTask',
    'SegmentState',
    'ConvertJob',
    'JobStatus',
    'PlaylistGenerator',
    'FFmpegRunner',
    'SegmentStream',
    'TranscodeRequest',
    'TranscoderProtocol',
    'SegmentSynthesizer',
    'SegmentJob',
    'parse_segment_index',
    'PreconvertManager',
]
