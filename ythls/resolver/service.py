"""视频格式解析服务：ID 校验、缓存、直链过期检测与格式选择。"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import InvalidIdentifier, NoSuitableFormat, UpstreamError
from .base import JsonDict, ResolverClientProtocol
from .cache import TTLCache
from .models import FormatType, MediaFormat, ResolvedMedia, parse_url_expiry

VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")

WATCH_URL = "https://www.youtube.com/watch?v={video_id}"


def validate_video_id(video_id: Any) -> str:
    """校验 YouTube 视频 ID

    Raises:
        InvalidIdentifier: ID 不是 11 位 [A-Za-z0-9_-]
    """
    if not isinstance(video_id, str) or not VIDEO_ID_PATTERN.match(video_id):
        raise InvalidIdentifier("Invalid YouTube video ID")
    return video_id


@dataclass
class ResolverConfig:
    """解析服务配置"""

    api_url: str = "https://api.vidfly.ai/api/media/youtube/download"
    timeout: float = 15
    max_attempts: int = 3
    retry_delay: float = 1.0
    cache_ttl: int = 18000  # 5 小时
    url_expiry_margin: int = 300  # 距过期 5 分钟即刷新

    @classmethod
    def from_app_config(cls, app_config: dict) -> "ResolverConfig":
        section = (app_config or {}).get("resolver", {}) or {}
        config = cls()
        if section.get("api_url"):
            config.api_url = section["api_url"]
        if "timeout" in section:
            config.timeout = float(section["timeout"] or 15)
        if "max_attempts" in section:
            config.max_attempts = int(section["max_attempts"] or 3)
        if "retry_delay" in section:
            config.retry_delay = float(section["retry_delay"] or 0)
        if "cache_ttl_seconds" in section:
            config.cache_ttl = int(section["cache_ttl_seconds"] or 18000)
        if "url_expiry_margin" in section:
            config.url_expiry_margin = int(section["url_expiry_margin"] or 0)
        return config


class FormatResolver:
    """按视频缓存解析结果（所有格式共用一个 key）。"""

    def __init__(
        self,
        client: ResolverClientProtocol,
        config: Optional[ResolverConfig] = None,
        *,
        cache: Optional[TTLCache[ResolvedMedia]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or ResolverConfig()
        self.client = client
        self.cache: TTLCache[ResolvedMedia] = cache or TTLCache(self.config.cache_ttl)
        self._logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # 解析
    # ------------------------------------------------------------------
    def resolve(self, video_id: str, force_refresh: bool = False) -> ResolvedMedia:
        """获取视频的所有可用格式

        Args:
            video_id: 11 位 YouTube 视频 ID
            force_refresh: 忽略缓存，强制重新解析

        Returns:
            ResolvedMedia

        Raises:
            InvalidIdentifier: ID 格式错误（不会发起上游请求）
            UpstreamError: 解析 API 失败或返回数据不完整
        """
        validate_video_id(video_id)

        stale = self.cache.get_entry(video_id)
        if stale is not None and not force_refresh:
            self._logger.debug("[解析-缓存] %s", video_id)
            return stale.value

        with self.cache.key_lock(video_id):
            # 等锁期间其他请求可能已经刷新过
            entry = self.cache.get_entry(video_id)
            if entry is not None and entry is not stale:
                return entry.value

            self._logger.info("刷新视频格式: %s (force=%s)", video_id, force_refresh)
            payload = self.client.fetch_media(WATCH_URL.format(video_id=video_id))
            resolved = self._build_resolved(video_id, payload)
            self.cache.set(video_id, resolved)
            return resolved

    def is_expired(self, media_format: MediaFormat) -> bool:
        return media_format.is_expired(self.cache.now(), self.config.url_expiry_margin)

    def resolve_fresh_format(
        self,
        video_id: str,
        quality: Optional[str] = None,
        audio_only: bool = False,
        *,
        on_refresh: Optional[Callable[[], None]] = None,
    ) -> Tuple[ResolvedMedia, MediaFormat]:
        """解析并选择一个直链未过期的格式

        选中格式的直链过期时强制重新解析并重新选择，过期直链不会返回给调用方。

        Args:
            video_id: 视频 ID
            quality: 期望清晰度
            audio_only: 是否选择音频
            on_refresh: 需要强制刷新时的回调

        Returns:
            (ResolvedMedia, MediaFormat)

        Raises:
            UpstreamError: 刷新后直链仍然过期
        """
        resolved = self.resolve(video_id)
        media_format = select_format(resolved, quality=quality, audio_only=audio_only)
        if not self.is_expired(media_format):
            return resolved, media_format

        self._logger.info("直链已过期，重新解析: %s (%s)", video_id, media_format.quality_label)
        if on_refresh is not None:
            on_refresh()
        resolved = self.resolve(video_id, force_refresh=True)
        media_format = select_format(resolved, quality=quality, audio_only=audio_only)
        if self.is_expired(media_format):
            raise UpstreamError("Resolution service returned an expired media URL")
        return resolved, media_format

    # ------------------------------------------------------------------
    # 内部工具方法
    # ------------------------------------------------------------------
    def _build_resolved(self, video_id: str, payload: JsonDict) -> ResolvedMedia:
        if not isinstance(payload, dict):
            raise UpstreamError("Invalid response from API")

        title = payload.get("title")
        items = payload.get("items")
        if not title or not isinstance(items, list) or payload.get("duration") is None:
            raise UpstreamError("Invalid response from API: missing title, items or duration")

        try:
            duration = float(payload["duration"])
        except (TypeError, ValueError) as exc:
            raise UpstreamError(f"Invalid duration in API response: {payload.get('duration')!r}") from exc
        if not math.isfinite(duration) or duration < 0:
            raise UpstreamError(f"Invalid duration in API response: {payload.get('duration')!r}")

        formats = self._parse_formats(items)
        self._logger.info("解析成功: %s, %s 个可用格式, 时长 %.0fs", video_id, len(formats), duration)
        return ResolvedMedia(
            video_id=video_id,
            title=str(title),
            thumbnail=str(payload.get("thumbnail") or ""),
            duration_seconds=duration,
            formats=tuple(formats),
            resolved_at=self.cache.now(),
        )

    def _parse_formats(self, items: List[Dict[str, Any]]) -> List[MediaFormat]:
        formats = []
        for item in items:
            if not isinstance(item, dict):
                continue
            url = item.get("url") or ""
            if not isinstance(url, str) or not url.startswith(("http://", "https://")):
                continue
            format_type = FormatType.from_api(item.get("type"))
            if format_type is None:
                continue
            formats.append(
                MediaFormat(
                    type=format_type,
                    quality_label=str(item.get("label") or item.get("quality") or "unknown"),
                    container=str(item.get("ext") or item.get("extension") or "unknown"),
                    direct_url=url,
                    url_expiry=parse_url_expiry(url),
                )
            )
        return formats


def select_format(
    resolved: ResolvedMedia,
    quality: Optional[str] = None,
    audio_only: bool = False,
) -> MediaFormat:
    """按选择策略挑选格式

    视频：标签包含 quality 的合并音视频格式 -> 第一个合并格式。
    音频：第一个纯音频格式 -> 第一个合并格式。

    Raises:
        NoSuitableFormat: 没有可用的格式
    """
    combined = resolved.combined_formats()

    if audio_only:
        audio = resolved.audio_formats()
        if audio:
            return audio[0]
        if combined:
            return combined[0]
        raise NoSuitableFormat("Audio format not available")

    if quality:
        for media_format in combined:
            if quality in media_format.quality_label:
                return media_format
    if combined:
        return combined[0]
    raise NoSuitableFormat(f"Format not available: {quality or 'any'}")


__all__ = [
    "FormatResolver",
    "ResolverConfig",
    "select_format",
    "validate_video_id",
    "VIDEO_ID_PATTERN",
]
