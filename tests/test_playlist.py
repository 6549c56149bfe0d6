import pytest

from ythls.errors import NoSuitableFormat
from ythls.resolver import FormatType, MediaFormat, ResolvedMedia
from ythls.transcode import PlaylistGenerator
from ythls.transcode.playlist import resolution_for_quality

from conftest import NOW, VIDEO_ID, media_url


def _resolved(duration=125, labels=("360p", "720p"), audio=True):
    formats = [
        MediaFormat(FormatType.VIDEO_WITH_AUDIO, label, "mp4", media_url(18))
        for label in labels
    ]
    if audio:
        formats.append(MediaFormat(FormatType.AUDIO_ONLY, "128kbps", "m4a", media_url(140)))
    return ResolvedMedia(
        video_id=VIDEO_ID,
        title="Test Video",
        thumbnail="",
        duration_seconds=duration,
        formats=tuple(formats),
        resolved_at=NOW,
    )


@pytest.fixture
def generator():
    return PlaylistGenerator(segment_duration=10)


def test_variant_manifest_covers_full_duration(generator):
    playlist = generator.build_variant_manifest(_resolved(duration=125), "720p")
    lines = playlist.splitlines()

    assert lines[:5] == [
        "#EXTM3U",
        "#EXT-X-VERSION:3",
        "#EXT-X-TARGETDURATION:10",
        "#EXT-X-MEDIA-SEQUENCE:0",
        "#EXT-X-PLAYLIST-TYPE:VOD",
    ]
    assert lines[-1] == "#EXT-X-ENDLIST"
    assert playlist.endswith("\n")

    extinf = [line for line in lines if line.startswith("#EXTINF:")]
    assert len(extinf) == 13
    assert extinf[:12] == ["#EXTINF:10.000,"] * 12
    assert extinf[-1] == "#EXTINF:5.000,"

    assert lines[6] == f"/stream/{VIDEO_ID}/segment0_720p.ts"
    assert lines[-2] == f"/stream/{VIDEO_ID}/segment12_720p.ts"


def test_exact_multiple_has_no_empty_segment(generator):
    assert generator.segment_durations(30) == [10, 10, 10]
    assert generator.get_segment_count(30.5) == 4


def test_zero_duration_has_no_segments(generator):
    playlist = generator.build_variant_manifest(_resolved(duration=0), "720p")

    assert "#EXTINF" not in playlist
    assert playlist.endswith("#EXT-X-ENDLIST\n")


def test_audio_manifest_uses_audio_segments(generator):
    playlist = generator.build_audio_manifest(_resolved(duration=25))

    assert f"/stream/{VIDEO_ID}/asegment0.aac" in playlist
    assert f"/stream/{VIDEO_ID}/asegment2.aac" in playlist
    assert "#EXTINF:5.000," in playlist


def test_audio_manifest_without_any_audio_source(generator):
    with pytest.raises(NoSuitableFormat):
        generator.build_audio_manifest(_resolved(labels=(), audio=False))


def test_variant_manifest_without_combined_format(generator):
    with pytest.raises(NoSuitableFormat):
        generator.build_variant_manifest(_resolved(labels=()), "1080p")


def test_master_manifest(generator):
    playlist = generator.build_master_manifest(_resolved(labels=("720p", "360p", "1080p")))
    lines = playlist.splitlines()

    assert lines[0] == "#EXTM3U"
    assert lines[2] == (
        '#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="audio",NAME="English",DEFAULT=YES,AUTOSELECT=YES,'
        f'URI="/stream/{VIDEO_ID}/audio.m3u8"'
    )
    assert lines[3:] == [
        '#EXT-X-STREAM-INF:BANDWIDTH=800000,RESOLUTION=640x360,CODECS="avc1.42e01e,mp4a.40.2",AUDIO="audio"',
        f"/stream/{VIDEO_ID}/360p.m3u8",
        '#EXT-X-STREAM-INF:BANDWIDTH=2800000,RESOLUTION=1280x720,CODECS="avc1.42e01e,mp4a.40.2",AUDIO="audio"',
        f"/stream/{VIDEO_ID}/720p.m3u8",
        '#EXT-X-STREAM-INF:BANDWIDTH=5000000,RESOLUTION=1920x1080,CODECS="avc1.42e01e,mp4a.40.2",AUDIO="audio"',
        f"/stream/{VIDEO_ID}/1080p.m3u8",
    ]


def test_master_manifest_unknown_quality_uses_default_bandwidth(generator):
    playlist = generator.build_master_manifest(_resolved(labels=("240p",)))

    assert "BANDWIDTH=1000000,RESOLUTION=428x240" in playlist


def test_master_manifest_is_deterministic(generator):
    resolved = _resolved()
    assert generator.build_master_manifest(resolved) == generator.build_master_manifest(resolved)
    assert generator.build_variant_manifest(resolved, "360p") == generator.build_variant_manifest(resolved, "360p")


def test_master_manifest_without_video(generator):
    with pytest.raises(NoSuitableFormat):
        generator.build_master_manifest(_resolved(labels=()))


def test_resolution_for_quality():
    assert resolution_for_quality("480p") == "854x480"
    assert resolution_for_quality("audio") is None
    assert resolution_for_quality("1440p") == "2560x1440"


def test_master_manifest_lists_labels_without_height(generator):
    playlist = generator.build_master_manifest(_resolved(labels=("medium",)))

    assert playlist.splitlines()[3:] == [
        '#EXT-X-STREAM-INF:BANDWIDTH=1000000,CODECS="avc1.42e01e,mp4a.40.2",AUDIO="audio"',
        f"/stream/{VIDEO_ID}/medium.m3u8",
    ]


def test_master_manifest_orders_heights_before_other_labels(generator):
    resolved = _resolved(labels=("hd", "720p", "high quality", "360p", "hd"))

    assert resolved.available_qualities() == ("360p", "720p", "hd")
    playlist = generator.build_master_manifest(resolved)
    variants = [line for line in playlist.splitlines() if line.startswith("/stream/")]
    assert variants == [
        f"/stream/{VIDEO_ID}/360p.m3u8",
        f"/stream/{VIDEO_ID}/720p.m3u8",
        f"/stream/{VIDEO_ID}/hd.m3u8",
    ]
