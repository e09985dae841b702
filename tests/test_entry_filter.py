from video_downscaler.archive import derive_output_name, is_video_entry, select_video_entries
from video_downscaler.models import ArchiveEntry, Config


EXTENSIONS = (".mov", ".mp4")


def _file(path: str) -> ArchiveEntry:
    return ArchiveEntry(path=path, is_directory=False)


def test_video_extensions_match_case_insensitively() -> None:
    assert is_video_entry(_file("IMG_0001.MOV"), EXTENSIONS)
    assert is_video_entry(_file("clip.mp4"), EXTENSIONS)
    assert is_video_entry(_file("clip.MP4"), EXTENSIONS)
    assert is_video_entry(_file("nested/dir/clip.Mov"), EXTENSIONS)


def test_other_extensions_are_skipped() -> None:
    assert not is_video_entry(_file("notes.txt"), EXTENSIONS)
    assert not is_video_entry(_file("clip.mp4.part"), EXTENSIONS)
    assert not is_video_entry(_file("mp4"), EXTENSIONS)


def test_shadow_files_are_skipped_even_with_video_extension() -> None:
    assert not is_video_entry(_file("folder/._IMG_0001.MOV"), EXTENSIONS)
    assert not is_video_entry(_file("._clip.mp4"), EXTENSIONS)
    assert not is_video_entry(_file("__MACOSX/._dir/clip.mp4"), EXTENSIONS)


def test_directories_are_not_videos() -> None:
    assert not is_video_entry(ArchiveEntry(path="movies.mp4/", is_directory=True), EXTENSIONS)
    assert not is_video_entry(_file("movies.mp4/"), EXTENSIONS)


def test_select_video_entries_keeps_listing_order() -> None:
    entries = [
        ArchiveEntry(path="b/", is_directory=True),
        _file("a.mp4"),
        _file("b/._shadow.mp4"),
        _file("b/c.MOV"),
        _file("readme.txt"),
    ]

    selected = select_video_entries(entries, Config())

    assert [entry.path for entry in selected] == ["a.mp4", "b/c.MOV"]


def test_select_video_entries_uses_configured_extensions() -> None:
    entries = [_file("a.mp4"), _file("b.mkv")]

    selected = select_video_entries(entries, Config(video_extensions=(".mkv",)))

    assert [entry.path for entry in selected] == ["b.mkv"]


def test_output_name_inserts_suffix_before_extension() -> None:
    assert derive_output_name("a.mp4", "_720p") == "a_720p.mp4"
    assert derive_output_name("b/c.MOV", "_720p") == "b/c_720p.MOV"
    assert derive_output_name("x/y/clip.v2.mp4", "_480p") == "x/y/clip.v2_480p.mp4"


def test_output_suffix_follows_target_height() -> None:
    assert Config().output_suffix == "_720p"
    assert Config(target_height=480).output_suffix == "_480p"
