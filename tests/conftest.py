import subprocess
import sys

import pytest

from ythls.resolver import FormatResolver, ResolverConfig, TTLCache
from ythls.transcode import FFmpegRunner, SegmentStream, StreamConfig

VIDEO_ID = "dQw4w9WgXcQ"

# 2023-11-14，直链默认在此之后过期
NOW = 1_700_000_000.0
FAR_EXPIRY = int(NOW) + 6 * 3600


def media_url(itag, expire=FAR_EXPIRY):
    return f"https://rr1---sn-test.googlevideo.com/videoplayback?expire={expire}&itag={itag}&sig=abc"


def make_payload(duration=125, expire=FAR_EXPIRY, items=None, title="Test Video"):
    if items is None:
        items = [
            {"type": "video_with_audio", "label": "360p", "ext": "mp4", "url": media_url(18, expire)},
            {"type": "video_with_audio", "label": "720p", "ext": "mp4", "url": media_url(22, expire)},
            {"type": "video", "label": "1080p", "ext": "mp4", "url": media_url(137, expire)},
            {"type": "audio", "label": "128kbps", "ext": "m4a", "url": media_url(140, expire)},
        ]
    return {
        "title": title,
        "thumbnail": "https://i.ytimg.com/vi/test/hqdefault.jpg",
        "duration": duration,
        "items": items,
    }


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeResolverClient:
    """按顺序返回预设的响应，记录每次调用的 URL"""

    def __init__(self, *responses):
        self.responses = list(responses) or [make_payload()]
        self.calls = []

    def fetch_media(self, watch_url):
        self.calls.append(watch_url)
        response = self.responses[min(len(self.calls), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return response


class ScriptedRunner(FFmpegRunner):
    """用 Python 子进程代替 ffmpeg，输出由 script 决定"""

    def __init__(self, script, config=None):
        super().__init__(config or StreamConfig(kill_timeout=2.0))
        self.script = script
        self.requests = []
        self.streams = []

    def build_segment_command(self, request):
        self.requests.append(request)
        return [sys.executable, "-c", self.script]

    def transcode(self, request):
        stream = super().transcode(request)
        self.streams.append(stream)
        return stream


ENDLESS_SCRIPT = (
    "import sys\n"
    "while True:\n"
    "    sys.stdout.buffer.write(b'G' * 188)\n"
    "    sys.stdout.buffer.flush()\n"
)

FINITE_SCRIPT = "import sys; sys.stdout.buffer.write(b'G' * 4096)"

FAILING_SCRIPT = "import sys; sys.stderr.write('Server returned 403 Forbidden\\n'); sys.exit(1)"


def start_python(script):
    return subprocess.Popen(
        [sys.executable, "-c", script],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client():
    return FakeResolverClient()


@pytest.fixture
def resolver(client, clock):
    config = ResolverConfig()
    return FormatResolver(client, config, cache=TTLCache(config.cache_ttl, clock=clock))


@pytest.fixture
def stream_factory():
    streams = []

    def factory(script, **kwargs):
        stream = SegmentStream(start_python(script), label="test", **kwargs)
        streams.append(stream)
        return stream

    yield factory
    for stream in streams:
        stream.close()
