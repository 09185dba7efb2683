import pytest

from tests.support.stubs import make_album, make_job


@pytest.mark.unit
def test_reserve_name_is_case_insensitive():
    from hifidl.domain.downloads.pipeline import JobRun
    from hifidl.domain.downloads.tagging import codec_spec

    run = JobRun(
        job=make_job(),
        album=make_album(1),
        provider=None,
        scratch_dir="/tmp",
        target=codec_spec("FLAC"),
        track_name_template="{name}",
    )

    assert run.reserve_name("Intro") == "Intro"
    assert run.reserve_name("intro") == "intro (2)"
    assert run.reserve_name("Intro") == "Intro (3)"


@pytest.mark.unit
def test_select_tracks_drops_unstreamable():
    from hifidl.domain.downloads.jobs import select_tracks
    from hifidl.domain.errors import NoTracksError
    from hifidl.models.dto import AlbumInfo, TrackInfo

    album = AlbumInfo(
        id="a",
        title="A",
        tracks=[TrackInfo(id=1, title="x", streamable=False), TrackInfo(id=2, title="y")],
    )
    assert [t.id for t in select_tracks(album, None)] == [2]
    with pytest.raises(NoTracksError, match="Track not found or unavailable"):
        select_tracks(album, "1")

    locked = AlbumInfo(id="b", title="B", tracks=[TrackInfo(id=1, title="x", streamable=False)])
    with pytest.raises(NoTracksError, match="No streamable tracks in this album"):
        select_tracks(locked, None)


@pytest.mark.unit
@pytest.mark.parametrize(
    "path,content_type",
    [
        ("a.zip", "application/zip"),
        ("a.FLAC", "audio/flac"),
        ("a.m4a", "audio/mp4"),
        ("a.opus", "audio/opus"),
        ("a.lrc", "text/plain"),
        ("a.bin", "application/octet-stream"),
    ],
)
def test_content_type_for(path, content_type):
    from hifidl.domain.downloads.jobs import content_type_for

    assert content_type_for(path) == content_type


@pytest.mark.unit
def test_lyrics_lookup_uses_album_artist_fallback():
    from hifidl.domain.downloads.pipeline import lyrics_lookup
    from hifidl.models.dto import AlbumInfo, TrackInfo
    from tests.support.stubs import FakeLyrics

    resolver = FakeLyrics()
    album = AlbumInfo(id="a", title="Album", artist="Band")
    assert lyrics_lookup(resolver, TrackInfo(id=1, title="Song"), album) is None
    assert resolver.calls == ["Song"]
    assert lyrics_lookup(None, TrackInfo(id=1, title="Song"), album) is None


@pytest.mark.unit
def test_settings_are_clamped():
    from hifidl.settings import load_pipeline_settings

    settings = load_pipeline_settings(
        {"scratch_dir": "/tmp/x", "concurrency": 99, "max_retries": 0, "retry_base_delay": -1, "lyrics_api_url": " https://l.test/ "}
    )
    assert settings.concurrency == 16
    assert settings.max_retries == 1
    assert settings.retry_base_delay == 0.0
    assert settings.lyrics_api_url == "https://l.test"


@pytest.mark.unit
def test_settings_reject_non_positive_quota():
    from pydantic import ValidationError

    from hifidl.settings import PipelineSettings

    with pytest.raises(ValidationError):
        PipelineSettings(scratch_dir="/tmp", library_size_limit=0)
