"""
HLS 播放列表生成器

服务端根据解析得到的视频时长预先生成完整的 m3u8，
切片内容在请求时才由 FFmpeg 生成。
"""

import math
from typing import Iterable, List, Optional

from ..errors import NoSuitableFormat
from ..resolver.models import ResolvedMedia, quality_height
from ..resolver.service import select_format

# 各清晰度的带宽估计（bps）
BANDWIDTH_BY_QUALITY = {
    "360p": 800000,
    "480p": 1400000,
    "720p": 2800000,
    "1080p": 5000000,
}
DEFAULT_BANDWIDTH = 1000000

CODECS = "avc1.42e01e,mp4a.40.2"

SEGMENT_URL_TEMPLATE = "/stream/{video_id}/segment{index}_{quality}.ts"
AUDIO_SEGMENT_URL_TEMPLATE = "/stream/{video_id}/asegment{index}.aac"


def resolution_for_quality(quality: str) -> Optional[str]:
    """由清晰度标签推导 RESOLUTION 属性（16:9，宽度取偶数）

    Args:
        quality: 清晰度标签，如 "720p"

    Returns:
        如 "1280x720"，无法识别返回 None
    """
    height = quality_height(quality)
    if not height:
        return None
    width = int(round(height * 16 / 9))
    width += width % 2
    return f"{width}x{height}"


class PlaylistGenerator:
    """HLS 播放列表生成器

    同一输入总是生成逐字节相同的播放列表。
    """

    def __init__(self, segment_duration: int = 10):
        """初始化播放列表生成器

        Args:
            segment_duration: 切片时长（秒），默认 10 秒
        """
        self.segment_duration = segment_duration

    def build_master_manifest(
        self,
        resolved: ResolvedMedia,
        available_qualities: Optional[Iterable[str]] = None,
    ) -> str:
        """生成主播放列表（音频组 + 每个清晰度一个变体）

        Args:
            resolved: 解析结果
            available_qualities: 要列出的清晰度，默认取解析结果中出现的全部清晰度

        Returns:
            m3u8 内容

        Raises:
            NoSuitableFormat: 没有任何合并音视频格式
        """
        if available_qualities is None:
            available_qualities = resolved.available_qualities()

        combined = resolved.combined_formats()
        qualities = [
            quality for quality in available_qualities
            if any(quality in f.quality_label for f in combined)
        ]
        if not qualities:
            raise NoSuitableFormat("No video format available")

        video_id = resolved.video_id
        lines = [
            "#EXTM3U",
            "#EXT-X-VERSION:3",
            f'#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="audio",NAME="English",DEFAULT=YES,AUTOSELECT=YES,'
            f'URI="/stream/{video_id}/audio.m3u8"',
        ]

        for quality in qualities:
            attributes = [f"BANDWIDTH={BANDWIDTH_BY_QUALITY.get(quality, DEFAULT_BANDWIDTH)}"]
            resolution = resolution_for_quality(quality)
            if resolution:
                attributes.append(f"RESOLUTION={resolution}")
            attributes.append(f'CODECS="{CODECS}"')
            attributes.append('AUDIO="audio"')
            lines.append("#EXT-X-STREAM-INF:" + ",".join(attributes))
            lines.append(f"/stream/{video_id}/{quality}.m3u8")

        return "\n".join(lines) + "\n"

    def build_variant_manifest(self, resolved: ResolvedMedia, quality: str) -> str:
        """生成某个清晰度的切片列表

        Raises:
            NoSuitableFormat: 没有可用的视频格式
        """
        select_format(resolved, quality=quality)
        return self.generate_vod_playlist(
            resolved.duration_seconds,
            SEGMENT_URL_TEMPLATE,
            video_id=resolved.video_id,
            quality=quality,
        )

    def build_audio_manifest(self, resolved: ResolvedMedia) -> str:
        """生成纯音频切片列表

        Raises:
            NoSuitableFormat: 没有可用的音频来源
        """
        select_format(resolved, audio_only=True)
        return self.generate_vod_playlist(
            resolved.duration_seconds,
            AUDIO_SEGMENT_URL_TEMPLATE,
            video_id=resolved.video_id,
        )

    def generate_vod_playlist(self, duration: float, segment_url_template: str, **url_params) -> str:
        """生成 VOD 类型的 m3u8 播放列表

        基于视频时长预先计算所有切片，最后一个切片时长不超过剩余时长。

        Args:
            duration: 视频总时长（秒），<= 0 时不生成切片
            segment_url_template: 切片 URL 模板，可使用 {index}
            **url_params: 模板中的其他参数

        Returns:
            m3u8 播放列表内容
        """
        lines = [
            "#EXTM3U",
            "#EXT-X-VERSION:3",
            f"#EXT-X-TARGETDURATION:{self.segment_duration}",
            "#EXT-X-MEDIA-SEQUENCE:0",
            "#EXT-X-PLAYLIST-TYPE:VOD",
        ]

        for index, seg_duration in enumerate(self.segment_durations(duration)):
            lines.append(f"#EXTINF:{seg_duration:.3f},")
            lines.append(segment_url_template.format(index=index, **url_params))

        lines.append("#EXT-X-ENDLIST")
        return "\n".join(lines) + "\n"

    def segment_durations(self, duration: float) -> List[float]:
        """每个切片的实际时长"""
        return [
            min(self.segment_duration, duration - i * self.segment_duration)
            for i in range(self.get_segment_count(duration))
        ]

    def get_segment_count(self, duration: float) -> int:
        """获取视频的切片总数

        Args:
            duration: 视频时长（秒）

        Returns:
            切片总数
        """
        if duration <= 0:
            return 0
        return math.ceil(duration / self.segment_duration)
