"""Resolution service protocol definitions."""

from __future__ import annotations

from typing import Any, Dict, Protocol

JsonDict = Dict[str, Any]


class ResolverClientProtocol(Protocol):
    """Protocol that all resolution API clients should implement."""

    def fetch_media(self, watch_url: str) -> JsonDict:
        """Return the raw media payload (title, thumbnail, duration, items) for a watch URL.

        Implementations raise ``UpstreamError`` when the payload cannot be obtained.
        """


__all__ = ["ResolverClientProtocol", "JsonDict"]
