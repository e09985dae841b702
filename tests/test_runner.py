from __future__ import annotations

import shutil
import zipfile
from pathlib import Path

import pytest

from video_downscaler import runner
from video_downscaler.archive import AppendFailed, ArchiveUnreadable, ArchiveWriter
from video_downscaler.config import SetupError
from video_downscaler.ffmpeg_pipeline import TransformFailed
from video_downscaler.models import Config
from video_downscaler.runner import process_archive


def _build_zip(path: Path, files: dict[str, bytes], dirs: tuple[str, ...] = ()) -> Path:
    with zipfile.ZipFile(path, mode="w") as archive:
        for name in dirs:
            archive.writestr(name, b"")
        for name, data in files.items():
            archive.writestr(name, data)
    return path


def _fake_transform(source: Path, output: Path, config: Config) -> Path:
    output.parent.mkdir(parents=True, exist_ok=True)
    data = source.read_bytes()
    output.write_bytes(data[: max(len(data) // 2, 1)])
    return output


def _fake_probe(path: Path) -> str:
    return "1920x1080" if "converted" not in path.parts else "1280x720"


def _scenario_zip(tmp_path: Path) -> Path:
    return _build_zip(
        tmp_path / "videos_all.zip",
        {
            "a.mp4": b"a" * 400,
            "b/._shadow.mp4": b"shadow",
            "b/c.MOV": b"c" * 200,
        },
        dirs=("b/",),
    )


def _config(tmp_path: Path, **overrides: object) -> Config:
    scratch = tmp_path / "scratch"
    scratch.mkdir(exist_ok=True)
    return Config(scratch_dir=scratch, **overrides)


def test_scenario_converts_videos_and_mirrors_directories(tmp_path: Path) -> None:
    source = _scenario_zip(tmp_path)
    destination = tmp_path / "videos_all_720p.zip"
    logs: list[str] = []

    summary = process_archive(
        source,
        destination,
        _config(tmp_path),
        log_cb=logs.append,
        transform=_fake_transform,
        probe=_fake_probe,
    )

    assert summary.total == 2
    assert summary.success == 2
    assert summary.failed == 0
    assert summary.directories == 1
    assert summary.output_entries == 3
    assert [item.source_path for item in summary.results] == ["a.mp4", "b/c.MOV"]

    with zipfile.ZipFile(destination) as archive:
        names = archive.namelist()
        assert sorted(names) == ["a_720p.mp4", "b/", "b/c_720p.MOV"]
        assert archive.read("a_720p.mp4") == b"a" * 200
        assert archive.getinfo("b/").is_dir()

    assert "[1/2 - 50%] ETA: 计算中..." in logs
    assert any(line.startswith("[2/2 - 100%] ETA: ") for line in logs)
    assert "  原始: 1920x1080 (400B)" in logs
    assert "  转换后: 1280x720 (200B) - 体积减少 50.0%" in logs
    assert "共发现 2 个视频文件待转换 (600B)" in logs
    assert "成功: 2" in logs
    assert "失败: 0" in logs
    assert "新压缩包条目数: 3" in logs


def test_transform_failure_is_counted_and_run_continues(tmp_path: Path) -> None:
    source = _scenario_zip(tmp_path)
    destination = tmp_path / "out.zip"

    def flaky_transform(source_path: Path, output: Path, config: Config) -> Path:
        if source_path.name == "a.mp4":
            raise TransformFailed(source_path, "exit 1")
        return _fake_transform(source_path, output, config)

    summary = process_archive(
        source, destination, _config(tmp_path), transform=flaky_transform, probe=_fake_probe
    )

    assert summary.success == 1
    assert summary.failed == 1
    assert summary.success + summary.failed == summary.total
    assert summary.results[0].status == "FAILED"
    assert "exit 1" in summary.results[0].error

    with zipfile.ZipFile(destination) as archive:
        assert sorted(archive.namelist()) == ["b/", "b/c_720p.MOV"]


def test_missing_output_after_transform_counts_as_failure(tmp_path: Path) -> None:
    source = _scenario_zip(tmp_path)
    destination = tmp_path / "out.zip"

    def silent_transform(source_path: Path, output: Path, config: Config) -> Path:
        return output

    summary = process_archive(
        source, destination, _config(tmp_path), transform=silent_transform, probe=_fake_probe
    )

    assert summary.success == 0
    assert summary.failed == 2
    with zipfile.ZipFile(destination) as archive:
        assert archive.namelist() == ["b/"]


def test_unexpected_error_in_transform_does_not_stop_the_run(tmp_path: Path) -> None:
    source = _scenario_zip(tmp_path)

    def broken_transform(source_path: Path, output: Path, config: Config) -> Path:
        raise ValueError("boom")

    summary = process_archive(
        source, tmp_path / "out.zip", _config(tmp_path), transform=broken_transform, probe=_fake_probe
    )

    assert summary.failed == 2
    assert all(item.error == "未预期错误: boom" for item in summary.results)


def test_extraction_failure_is_counted(tmp_path: Path) -> None:
    source = tmp_path / "in.zip"
    with zipfile.ZipFile(source, mode="w", compression=zipfile.ZIP_STORED) as archive:
        archive.writestr("bad.mp4", b"A" * 100)
        archive.writestr("good.mp4", b"g" * 10)
    source.write_bytes(source.read_bytes().replace(b"A" * 100, b"B" * 100))

    summary = process_archive(
        source, tmp_path / "out.zip", _config(tmp_path), transform=_fake_transform, probe=_fake_probe
    )

    assert summary.success == 1
    assert summary.failed == 1
    assert summary.results[0].error.startswith("解压失败: bad.mp4")


def test_scratch_holds_only_the_current_item(tmp_path: Path) -> None:
    source = _scenario_zip(tmp_path)
    config = _config(tmp_path)
    seen: list[list[str]] = []

    def inspecting_transform(source_path: Path, output: Path, cfg: Config) -> Path:
        run_dir = next(p for p in source_path.parents if p.parent == config.scratch_dir)
        seen.append(sorted(p.name for p in run_dir.iterdir()))
        return _fake_transform(source_path, output, cfg)

    process_archive(source, tmp_path / "out.zip", config, transform=inspecting_transform, probe=_fake_probe)

    assert seen == [["item_00000"], ["item_00001"]]
    assert list(config.scratch_dir.iterdir()) == []


def test_scratch_is_cleaned_after_failures(tmp_path: Path) -> None:
    source = _scenario_zip(tmp_path)
    config = _config(tmp_path)

    def failing_transform(source_path: Path, output: Path, cfg: Config) -> Path:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(b"partial")
        raise TransformFailed(source_path, "killed")

    process_archive(source, tmp_path / "out.zip", config, transform=failing_transform, probe=_fake_probe)

    assert list(config.scratch_dir.iterdir()) == []


def test_progress_callback_sees_every_item(tmp_path: Path) -> None:
    source = _scenario_zip(tmp_path)
    calls: list[tuple[int, int]] = []

    process_archive(
        source,
        tmp_path / "out.zip",
        _config(tmp_path),
        progress_cb=lambda done, total: calls.append((done, total)),
        transform=_fake_transform,
        probe=_fake_probe,
    )

    assert calls == [(1, 2), (2, 2)]


def test_existing_destination_is_overwritten(tmp_path: Path) -> None:
    source = _scenario_zip(tmp_path)
    destination = _build_zip(tmp_path / "out.zip", {"a_720p.mp4": b"stale", "old.mp4": b"old"})

    summary = process_archive(
        source, destination, _config(tmp_path), transform=_fake_transform, probe=_fake_probe
    )

    assert summary.success == 2
    with zipfile.ZipFile(destination) as archive:
        assert sorted(archive.namelist()) == ["a_720p.mp4", "b/", "b/c_720p.MOV"]


def test_unreadable_archive_aborts_before_touching_destination(tmp_path: Path) -> None:
    source = tmp_path / "in.zip"
    source.write_bytes(b"not a zip")
    destination = tmp_path / "out.zip"

    with pytest.raises(ArchiveUnreadable):
        process_archive(source, destination, _config(tmp_path), transform=_fake_transform, probe=_fake_probe)

    assert not destination.exists()


def test_same_input_and_output_is_rejected(tmp_path: Path) -> None:
    source = _scenario_zip(tmp_path)

    with pytest.raises(SetupError):
        process_archive(source, source, _config(tmp_path), transform=_fake_transform, probe=_fake_probe)


def test_archive_without_videos_still_copies_directories(tmp_path: Path) -> None:
    source = _build_zip(tmp_path / "in.zip", {"notes.txt": b"hi"}, dirs=("empty/", "empty/deeper/"))
    destination = tmp_path / "out.zip"

    summary = process_archive(source, destination, _config(tmp_path), transform=_fake_transform, probe=_fake_probe)

    assert summary.total == 0
    assert summary.success == 0
    with zipfile.ZipFile(destination) as archive:
        assert archive.namelist() == ["empty/", "empty/deeper/"]


def test_worker_pool_produces_the_same_archive(tmp_path: Path) -> None:
    files = {f"day{i}/clip{i}.mp4": bytes([65 + i]) * 64 for i in range(6)}
    source = _build_zip(tmp_path / "in.zip", files, dirs=tuple(f"day{i}/" for i in range(6)))
    destination = tmp_path / "out.zip"

    summary = process_archive(
        source,
        destination,
        _config(tmp_path, max_workers=3),
        transform=_fake_transform,
        probe=_fake_probe,
    )

    assert summary.success == 6
    assert [item.index for item in summary.results] == list(range(6))
    with zipfile.ZipFile(destination) as archive:
        assert archive.testzip() is None
        names = archive.namelist()
    assert sorted(name for name in names if not name.endswith("/")) == sorted(
        f"day{i}/clip{i}_720p.mp4" for i in range(6)
    )
    assert len(names) == len(set(names)) == 12


def test_append_failure_is_counted_and_scratch_cleaned(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    source = _scenario_zip(tmp_path)
    destination = tmp_path / "out.zip"
    config = _config(tmp_path)
    original_append = ArchiveWriter.append_file

    def flaky_append(self: ArchiveWriter, local_path: Path, internal_path: str) -> None:
        if internal_path == "a_720p.mp4":
            raise AppendFailed(internal_path, "disk full")
        original_append(self, local_path, internal_path)

    monkeypatch.setattr(ArchiveWriter, "append_file", flaky_append)

    summary = process_archive(source, destination, config, transform=_fake_transform, probe=_fake_probe)

    assert summary.success == 1
    assert summary.failed == 1
    assert summary.success + summary.failed == summary.total
    assert summary.results[0].status == "FAILED"
    assert summary.results[0].error == "写入压缩包失败: a_720p.mp4 (disk full)"
    assert summary.results[0].new_size == 0
    with zipfile.ZipFile(destination) as archive:
        assert "a_720p.mp4" not in archive.namelist()
        assert "b/c_720p.MOV" in archive.namelist()
    assert list(config.scratch_dir.iterdir()) == []


def test_cleanup_failure_keeps_item_outcome(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    source = _scenario_zip(tmp_path)
    config = _config(tmp_path)
    logs: list[str] = []
    real_rmtree = shutil.rmtree

    def stubborn_rmtree(path, *args, **kwargs):
        if Path(path).name == "item_00000":
            raise PermissionError(13, "Permission denied", str(path))
        return real_rmtree(path, *args, **kwargs)

    monkeypatch.setattr(runner.shutil, "rmtree", stubborn_rmtree)

    summary = process_archive(
        source,
        tmp_path / "out.zip",
        config,
        log_cb=logs.append,
        transform=_fake_transform,
        probe=_fake_probe,
    )

    assert [item.status for item in summary.results] == ["SUCCESS", "SUCCESS"]
    assert summary.success == 2
    assert summary.cleanup_warnings == 1
    assert summary.results[0].cleanup_warning.startswith("清理警告: 无法删除临时文件")
    assert summary.results[1].cleanup_warning == ""
    assert any(line.startswith("清理警告: 无法删除临时文件") for line in logs)
    assert "清理警告: 1" in logs


def test_uncreatable_destination_is_a_setup_error(tmp_path: Path) -> None:
    source = _scenario_zip(tmp_path)
    config = _config(tmp_path)
    blocker = tmp_path / "blocker"
    blocker.write_bytes(b"")

    with pytest.raises(SetupError, match="无法创建输出压缩包"):
        process_archive(source, blocker / "out.zip", config, transform=_fake_transform, probe=_fake_probe)

    assert list(config.scratch_dir.iterdir()) == []


def test_unusable_scratch_dir_leaves_destination_untouched(tmp_path: Path) -> None:
    source = _scenario_zip(tmp_path)
    destination = _build_zip(tmp_path / "out.zip", {"old.mp4": b"old"})
    scratch_file = tmp_path / "scratch_file"
    scratch_file.write_bytes(b"")

    with pytest.raises(SetupError, match="无法创建临时目录"):
        process_archive(
            source,
            destination,
            Config(scratch_dir=scratch_file),
            transform=_fake_transform,
            probe=_fake_probe,
        )

    with zipfile.ZipFile(destination) as archive:
        assert archive.namelist() == ["old.mp4"]
