import pytest
from hypothesis import given, settings
from hypothesis import strategies as st


@pytest.mark.unit
def test_sanitize_filename_replaces_forbidden_chars_and_trims():
    from hifidl.utils.naming import sanitize_filename

    name = 'AC/DC: Greatest*Hits? "Edition" <2020> | Disc\\1 ...  '
    cleaned = sanitize_filename(name)

    for ch in '<>:"/\\|?*':
        assert ch not in cleaned
    assert cleaned == 'AC_DC_ Greatest_Hits_ _Edition_ _2020_ _ Disc_1'


@pytest.mark.unit
def test_track_template_renders_padded_numbers_and_version():
    from hifidl.models.dto import AlbumInfo, TrackInfo
    from hifidl.utils.naming import apply_track_template

    album = AlbumInfo(id="1", title="Album", artist="Band", release_date="1999-03-01")
    track = TrackInfo(id=7, title="Song", version="Live", track_number=3, disc_number=2)

    assert apply_track_template("{track} - {name}", track, album) == "03 - Song (Live)"
    assert apply_track_template("{DISC}-{Track} {artist} [{year}]", track, album) == "02-03 Band [1999]"


@pytest.mark.unit
def test_unknown_placeholders_are_kept_verbatim():
    from hifidl.utils.naming import render_template

    assert render_template("{name} {mystery}", {"name": "x"}) == "x {mystery}"


@pytest.mark.unit
def test_empty_render_falls_back_to_unknown():
    from hifidl.models.dto import AlbumInfo
    from hifidl.utils.naming import apply_archive_template

    album = AlbumInfo(id="1", title="Album", artist="Band")
    assert apply_archive_template("{genre}", album) == "Unknown"
    assert apply_archive_template("...", album) == "Unknown"


@pytest.mark.unit
def test_archive_template_uses_fallback_artist():
    from hifidl.models.dto import AlbumInfo
    from hifidl.utils.naming import apply_archive_template

    album = AlbumInfo(id="1", title="Blue/Green", artist=None)
    assert apply_archive_template("{artists} - {name}", album, fallback_artist="Job Artist") == "Job Artist - Blue_Green"


_text = st.text(alphabet=st.characters(blacklist_categories=("Cs",)), max_size=40)


@pytest.mark.unit
@settings(max_examples=60, deadline=None)
@given(title=_text, artist=_text, template=st.sampled_from(["{artists} - {name}", "{year} {album}", "{name}"]))
def test_archive_naming_is_deterministic(title, artist, template):
    from hifidl.models.dto import AlbumInfo
    from hifidl.utils.naming import apply_archive_template

    album = AlbumInfo(id="1", title=title or "t", artist=artist or None, release_date="2001-01-01")
    first = apply_archive_template(template, album)
    second = apply_archive_template(template, album)

    assert first.encode("utf-8") == second.encode("utf-8")
    assert first
    for ch in '<>:"/\\|?*':
        assert ch not in first
