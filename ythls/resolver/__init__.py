"""视频解析服务模块入口。

提供统一的工厂方法，根据配置创建带缓存的解析服务。
"""

from __future__ import annotations

import logging
from typing import Optional

from .base import JsonDict, ResolverClientProtocol
from .cache import TTLCache
from .models import FormatType, MediaFormat, ResolvedMedia
from .service import FormatResolver, ResolverConfig, select_format, validate_video_id
from .vidfly_client import VidflyClient


def get_format_resolver(
    config: dict,
    *,
    client: Optional[ResolverClientProtocol] = None,
    logger: Optional[logging.Logger] = None,
) -> FormatResolver:
    """根据配置返回解析服务实例。"""

    logger = logger or logging.getLogger("FormatResolver")
    resolver_config = ResolverConfig.from_app_config(config)

    if client is None:
        client = VidflyClient(
            resolver_config.api_url,
            timeout=resolver_config.timeout,
            max_attempts=resolver_config.max_attempts,
            retry_delay=resolver_config.retry_delay,
            logger=logger.getChild("Vidfly"),
        )
        logger.info("使用解析 API: %s", resolver_config.api_url)

    return FormatResolver(client, resolver_config, logger=logger)


__all__ = [
    "get_format_resolver",
    "FormatResolver",
    "ResolverConfig",
    "ResolverClientProtocol",
    "JsonDict",
    "TTLCache",
    "FormatType",
    "MediaFormat",
    "ResolvedMedia",
    "VidflyClient",
    "select_format",
    "validate_video_id",
]
