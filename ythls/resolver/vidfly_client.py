"""基于 vidfly 下载 API 的视频解析客户端。"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import requests

from ..errors import UpstreamError
from .base import JsonDict, ResolverClientProtocol

DEFAULT_API_URL = "https://api.vidfly.ai/api/media/youtube/download"

DEFAULT_HEADERS = {
    "accept": "*/*",
    "content-type": "application/json",
    "x-app-name": "vidfly-web",
    "x-app-version": "1.0.0",
    "Referer": "https://vidfly.ai/",
}

# 这些状态码视为临时故障，可以重试
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class _TransientError(Exception):
    """可重试的失败。"""


class VidflyClient(ResolverClientProtocol):
    """通过 HTTP 调用 vidfly 解析服务。"""

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        *,
        timeout: float = 15,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._api_url = api_url
        self._timeout = timeout
        self._max_attempts = max(1, int(max_attempts))
        self._retry_delay = max(0.0, float(retry_delay))
        self._session = session or requests.Session()
        self._logger = logger or logging.getLogger(__name__)
        self._sleep = sleep

    # ------------------------------------------------------------------
    # 协议方法实现
    # ------------------------------------------------------------------
    def fetch_media(self, watch_url: str) -> JsonDict:
        last_error = "no attempt made"
        for attempt in range(1, self._max_attempts + 1):
            try:
                return self._request_once(watch_url)
            except _TransientError as exc:
                last_error = str(exc)
                self._logger.warning(
                    "解析 API 请求失败 (尝试 %s/%s): %s", attempt, self._max_attempts, last_error
                )
            if attempt < self._max_attempts and self._retry_delay:
                self._sleep(self._retry_delay)

        self._logger.error("解析 API 已达到最大重试次数 (%s): %s", self._max_attempts, last_error)
        raise UpstreamError(f"API request failed: {last_error}")

    # ------------------------------------------------------------------
    # 内部工具方法
    # ------------------------------------------------------------------
    def _request_once(self, watch_url: str) -> JsonDict:
        try:
            response = self._session.get(
                self._api_url,
                params={"url": watch_url},
                headers=DEFAULT_HEADERS,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise _TransientError(str(exc)) from exc

        if response.status_code in RETRYABLE_STATUS:
            raise _TransientError(f"HTTP {response.status_code}")
        if response.status_code != 200:
            raise UpstreamError(f"API request failed: HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise _TransientError(f"invalid JSON response: {exc}") from exc

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise UpstreamError("API request failed: Invalid response from API")
        return data


__all__ = ["VidflyClient", "DEFAULT_API_URL"]
