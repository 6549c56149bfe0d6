"""流服务异常定义。

所有异常都带有 HTTP 状态码，由 Flask 错误处理器统一转换为 ``{"error": ...}`` 响应。
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "StreamError",
    "InvalidIdentifier",
    "InvalidSegmentIndex",
    "UpstreamError",
    "NoSuitableFormat",
    "TranscodeError",
    "ConversionError",
]


class StreamError(RuntimeError):
    """流服务错误基类。"""

    status_code = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code

    @property
    def message(self) -> str:
        return str(self)


class InvalidIdentifier(StreamError):
    """视频 ID 不符合 11 位 YouTube ID 格式。"""

    status_code = 400


class InvalidSegmentIndex(StreamError):
    """切片编号为负数或不是数字。"""

    status_code = 400


class UpstreamError(StreamError):
    """解析 API 不可达、超时或返回了无法使用的数据。"""

    status_code = 502


class NoSuitableFormat(StreamError):
    """请求的清晰度或音轨不可用。"""

    status_code = 404


class TranscodeError(StreamError):
    """FFmpeg 无法启动或在输出任何数据前异常退出。"""

    status_code = 500


class ConversionError(StreamError):
    """预转码任务无法创建或不存在。"""

    status_code = 409
