"""YouTube -> HLS 流媒体服务"""

__version__ = "1.0.0"
