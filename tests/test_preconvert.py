import sys
import time

import pytest

from ythls.errors import ConversionError, InvalidIdentifier, NoSuitableFormat
from ythls.transcode import FFmpegRunner, JobStatus, PreconvertConfig, PreconvertManager, StreamConfig
from webserver import create_app

from conftest import VIDEO_ID, FakeResolverClient

OTHER_VIDEO_ID = "9bZkp7q19f0"

WRITE_HLS_SCRIPT = (
    "import os, sys\n"
    "out = sys.argv[1]\n"
    "open(os.path.join(out, 'segment0.ts'), 'wb').write(b'G' * 188)\n"
    "open(os.path.join(out, 'index.m3u8'), 'w').write("
    "'#EXTM3U\\n#EXT-X-TARGETDURATION:6\\n#EXTINF:6.0,\\nsegment0.ts\\n#EXT-X-ENDLIST\\n')\n"
)

SLEEP_SCRIPT = "import time; time.sleep(60)"


class ScriptedHlsRunner(FFmpegRunner):

    def __init__(self, script):
        super().__init__(StreamConfig())
        self.script = script
        self.sources = []

    def build_hls_command(self, source_url, output_dir, segment_duration):
        self.sources.append(source_url)
        return [sys.executable, "-c", self.script, output_dir]


def _wait_for(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


def _manager(resolver, tmp_path, script=WRITE_HLS_SCRIPT, **overrides):
    config = PreconvertConfig(work_dir=str(tmp_path / "hls"), **overrides)
    manager = PreconvertManager(resolver, ScriptedHlsRunner(script), config)
    manager.MONITOR_INTERVAL = 0.05
    return manager


def test_job_runs_to_completion(resolver, tmp_path):
    manager = _manager(resolver, tmp_path)

    job, created = manager.start_job(VIDEO_ID, "720p")

    assert created
    assert job.title == "Test Video"
    assert job.duration == 125
    assert _wait_for(lambda: job.status == JobStatus.COMPLETED)
    assert manager.resolve_output_file(VIDEO_ID, "720p", "index.m3u8") == job.output_dir
    assert job.to_dict()["playlist_url"] == f"/hls/{VIDEO_ID}/720p/index.m3u8"

    again, created = manager.start_job(VIDEO_ID, "720p")
    assert again is job
    assert not created


def test_active_job_is_shared(resolver, tmp_path):
    manager = _manager(resolver, tmp_path, script=SLEEP_SCRIPT)
    try:
        first, _ = manager.start_job(VIDEO_ID, "720p")
        second, created = manager.start_job(VIDEO_ID, "720p")

        assert second is first
        assert not created
        assert manager.get_active_count() == 1
        assert len(manager.ffmpeg_runner.sources) == 1
    finally:
        manager.stop_all()


def test_concurrency_limit(resolver, tmp_path):
    manager = _manager(resolver, tmp_path, script=SLEEP_SCRIPT, max_concurrent_jobs=1)
    try:
        manager.start_job(VIDEO_ID, "720p")

        with pytest.raises(ConversionError) as exc_info:
            manager.start_job(OTHER_VIDEO_ID, "720p")
        assert exc_info.value.status_code == 503
    finally:
        manager.stop_all()


def test_stop_job(resolver, tmp_path):
    manager = _manager(resolver, tmp_path, script=SLEEP_SCRIPT)
    job, _ = manager.start_job(VIDEO_ID, "360p")

    assert manager.stop_job(VIDEO_ID, "360p")

    assert job.status == JobStatus.STOPPED
    assert job.process.poll() is not None
    assert not manager.stop_job(VIDEO_ID, "1080p")


def test_failed_process_marks_error(resolver, tmp_path):
    manager = _manager(resolver, tmp_path, script="import sys; sys.exit(3)")

    job, _ = manager.start_job(VIDEO_ID, "720p")

    assert _wait_for(lambda: job.status == JobStatus.ERROR)
    assert job.error == "FFmpeg exited with code 3"


def test_timeout_stops_job(resolver, tmp_path):
    manager = _manager(resolver, tmp_path, script=SLEEP_SCRIPT, job_timeout=0)

    job, _ = manager.start_job(VIDEO_ID, "720p")

    assert _wait_for(lambda: job.status == JobStatus.STOPPED)
    assert job.error == "timeout"


def test_disabled(resolver, tmp_path):
    manager = _manager(resolver, tmp_path, enabled=False)

    with pytest.raises(ConversionError) as exc_info:
        manager.start_job(VIDEO_ID, "720p")
    assert exc_info.value.status_code == 404


def test_invalid_input(resolver, client, tmp_path):
    manager = _manager(resolver, tmp_path)

    with pytest.raises(InvalidIdentifier):
        manager.start_job("../etc", "720p")
    with pytest.raises(ConversionError) as exc_info:
        manager.start_job(VIDEO_ID, "../720p")
    assert exc_info.value.status_code == 400
    assert client.calls == []


def test_output_file_names_are_restricted(resolver, tmp_path):
    manager = _manager(resolver, tmp_path)
    job, _ = manager.start_job(VIDEO_ID, "720p")
    assert _wait_for(lambda: job.status == JobStatus.COMPLETED)

    assert manager.resolve_output_file(VIDEO_ID, "720p", "transcode.log") is None
    assert manager.resolve_output_file(VIDEO_ID, "720p", "../720p/index.m3u8") is None
    assert manager.resolve_output_file(VIDEO_ID, "720p", "segment9.ts") is None


def test_convert_api(tmp_path):
    app = create_app(
        {"preconvert": {"work_dir": str(tmp_path / "hls")}},
        client=FakeResolverClient(),
    )
    manager = app.extensions["ythls"]["preconvert_manager"]
    manager.ffmpeg_runner = ScriptedHlsRunner(WRITE_HLS_SCRIPT)
    manager.MONITOR_INTERVAL = 0.05
    http = app.test_client()

    assert http.get(f"/api/convert/{VIDEO_ID}?quality=720p").status_code == 404

    response = http.post(f"/api/convert/{VIDEO_ID}", json={"quality": "720p"})
    assert response.status_code == 202
    assert response.get_json()["job"]["status"] == "running"

    assert _wait_for(lambda: manager.get_job(VIDEO_ID, "720p").status == JobStatus.COMPLETED)
    status = http.get(f"/api/convert/{VIDEO_ID}?quality=720p").get_json()
    assert status["job"]["status"] == "completed"

    playlist = http.get(f"/hls/{VIDEO_ID}/720p/index.m3u8")
    assert playlist.status_code == 200
    assert playlist.mimetype == "application/vnd.apple.mpegurl"
    assert b"segment0.ts" in playlist.data
    playlist.close()

    segment = http.get(f"/hls/{VIDEO_ID}/720p/segment0.ts")
    assert segment.mimetype == "video/mp2t"
    segment.close()

    assert http.get(f"/hls/{VIDEO_ID}/720p/segment5.ts").status_code == 404
    assert http.post(f"/api/convert/{VIDEO_ID}", json={"quality": "720p"}).status_code == 200


def test_missing_quality_is_not_converted_from_fallback(resolver, tmp_path):
    manager = _manager(resolver, tmp_path)

    with pytest.raises(NoSuitableFormat) as exc_info:
        manager.start_job(VIDEO_ID, "1080p")

    assert exc_info.value.status_code == 404
    assert manager.ffmpeg_runner.sources == []
    assert manager.get_job(VIDEO_ID, "1080p").status == JobStatus.ERROR
    assert not (tmp_path / "hls" / VIDEO_ID / "1080p").exists()


def test_job_list_api(tmp_path):
    app = create_app(
        {"preconvert": {"work_dir": str(tmp_path / "hls")}},
        client=FakeResolverClient(),
    )
    manager = app.extensions["ythls"]["preconvert_manager"]
    manager.ffmpeg_runner = ScriptedHlsRunner(SLEEP_SCRIPT)
    http = app.test_client()
    try:
        assert http.get("/api/convert").get_json() == {"success": True, "jobs": [], "active": 0}

        http.post(f"/api/convert/{VIDEO_ID}", json={"quality": "360p"})
        listing = http.get("/api/convert").get_json()

        assert listing["active"] == 1
        assert [(job["video_id"], job["quality"], job["status"]) for job in listing["jobs"]] == [
            (VIDEO_ID, "360p", "running"),
        ]
    finally:
        manager.stop_all()
