"""
解析结果数据模型

MediaFormat 与 ResolvedMedia 都是不可变对象，刷新时整体替换，不做原地修改。
"""

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

# 直链中的过期时间参数，如 ...&expire=1700000000&...
EXPIRE_PATTERN = re.compile(r"[?&/]expire[=/](\d+)")

QUALITY_PATTERN = re.compile(r"(\d{3,4})p")

# 能直接用作播放列表 URL 的标签
LABEL_PATTERN = re.compile(r"^\w+$")


class FormatType(Enum):
    """媒体格式类型"""
    VIDEO_WITH_AUDIO = "video_with_audio"
    VIDEO_ONLY = "video_only"
    AUDIO_ONLY = "audio_only"

    @classmethod
    def from_api(cls, value: Optional[str]) -> Optional["FormatType"]:
        """将解析 API 的 type 字段映射为 FormatType

        Args:
            value: API 返回的类型（video_with_audio / video / audio）

        Returns:
            FormatType，无法识别返回 None
        """
        aliases = {
            "video_with_audio": cls.VIDEO_WITH_AUDIO,
            "video": cls.VIDEO_ONLY,
            "video_only": cls.VIDEO_ONLY,
            "audio": cls.AUDIO_ONLY,
            "audio_only": cls.AUDIO_ONLY,
        }
        return aliases.get((value or "").strip().lower())


def parse_url_expiry(url: str) -> Optional[int]:
    """从直链中提取过期时间（Unix 秒）

    Args:
        url: 直链

    Returns:
        过期时间戳，直链中没有 expire 参数返回 None
    """
    match = EXPIRE_PATTERN.search(url or "")
    if not match:
        return None
    return int(match.group(1))


def quality_height(label: str) -> Optional[int]:
    """从清晰度标签（如 "720p", "1080p60"）中提取高度"""
    match = QUALITY_PATTERN.search(label or "")
    if not match:
        return None
    return int(match.group(1))


@dataclass(frozen=True)
class MediaFormat:
    """单个可用的媒体格式"""

    type: FormatType
    quality_label: str
    container: str
    direct_url: str
    url_expiry: Optional[int] = None

    @property
    def is_combined(self) -> bool:
        return self.type is FormatType.VIDEO_WITH_AUDIO

    @property
    def is_audio_only(self) -> bool:
        return self.type is FormatType.AUDIO_ONLY

    def is_expired(self, now: Optional[float] = None, margin: int = 300) -> bool:
        """判断直链是否已过期（或即将过期）

        没有过期时间的直链一律视为已过期。

        Args:
            now: 当前时间戳，默认 time.time()
            margin: 安全余量（秒），距过期不足该值即视为过期

        Returns:
            是否需要重新解析
        """
        if self.url_expiry is None:
            return True
        if now is None:
            now = time.time()
        return now >= self.url_expiry - margin


@dataclass(frozen=True)
class ResolvedMedia:
    """一个视频的解析结果"""

    video_id: str
    title: str
    thumbnail: str
    duration_seconds: float
    formats: Tuple[MediaFormat, ...] = ()
    resolved_at: float = field(default_factory=time.time)

    def combined_formats(self) -> Tuple[MediaFormat, ...]:
        return tuple(f for f in self.formats if f.is_combined)

    def audio_formats(self) -> Tuple[MediaFormat, ...]:
        return tuple(f for f in self.formats if f.is_audio_only)

    def available_qualities(self) -> Tuple[str, ...]:
        """合并音视频格式中出现的清晰度

        可识别高度的按高度升序去重，其余标签（如 "medium"）按出现顺序排在后面。

        Returns:
            清晰度标签元组，如 ("360p", "720p", "medium")
        """
        heights = set()
        other_labels = []
        for media_format in self.combined_formats():
            label = media_format.quality_label
            height = quality_height(label)
            if height:
                heights.add(height)
            elif LABEL_PATTERN.match(label) and label not in other_labels:
                other_labels.append(label)
        return tuple(f"{height}p" for height in sorted(heights)) + tuple(other_labels)

    def to_info(self) -> Dict[str, Any]:
        """/api/info 响应体"""
        return {
            "title": self.title,
            "thumbnail": self.thumbnail,
            "duration": self.duration_seconds,
        }
