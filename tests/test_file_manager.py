import os
import zipfile

import pytest


@pytest.mark.unit
def test_archive_entries_live_under_one_folder_and_are_stored(tmp_path):
    from hifidl.domain.downloads.file_manager import ArchiveAssembler

    files = []
    for name in ("01 - A.flac", "02 - B.flac", "02 - B.lrc"):
        path = tmp_path / name
        path.write_bytes(name.encode("utf-8") * 10)
        files.append(str(path))
    zip_path = str(tmp_path / "Artist - Album.zip")

    size = ArchiveAssembler().assemble(files, zip_path, "Artist - Album")

    assert size == os.path.getsize(zip_path)
    with zipfile.ZipFile(zip_path) as archive:
        infos = archive.infolist()
        assert [i.filename for i in infos] == [
            "Artist - Album/01 - A.flac",
            "Artist - Album/02 - B.flac",
            "Artist - Album/02 - B.lrc",
        ]
        assert all(i.compress_type == zipfile.ZIP_STORED for i in infos)
        assert archive.read("Artist - Album/01 - A.flac") == b"01 - A.flac" * 10


@pytest.mark.unit
def test_missing_inputs_are_skipped(tmp_path):
    from hifidl.domain.downloads.file_manager import ArchiveAssembler

    present = tmp_path / "here.flac"
    present.write_bytes(b"x")
    zip_path = str(tmp_path / "out.zip")

    ArchiveAssembler().assemble([str(present), str(tmp_path / "gone.flac")], zip_path, "F")

    with zipfile.ZipFile(zip_path) as archive:
        assert archive.namelist() == ["F/here.flac"]


@pytest.mark.unit
def test_job_scratch_dir_lifecycle(tmp_path):
    from hifidl.domain.downloads.file_manager import FileManager

    fm = FileManager(str(tmp_path / "root"))
    path = fm.create_job_dir("abc")
    (tmp_path / "root" / "dl-abc" / "f.txt").write_text("x")

    assert path == str(tmp_path / "root" / "dl-abc")
    fm.cleanup_job_dir("abc")
    assert not os.path.exists(path)
    # Cleaning an already removed directory is a no-op
    fm.cleanup_job_dir("abc")
