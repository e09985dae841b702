from __future__ import annotations

import posixpath
import shutil
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from pathlib import Path
from typing import Callable

from .archive import (
    AppendFailed,
    ArchiveReader,
    ArchiveWriter,
    ExtractionFailed,
    derive_output_name,
    replicate_directories,
    select_video_entries,
)
from .config import SetupError
from .ffmpeg_pipeline import TransformFailed, probe_resolution, transcode_to_height
from .models import ArchiveEntry, Config, ItemResult, RunSummary, WorkItem
from .progress import ProgressState, format_reduction, format_size


LogCallback = Callable[[str], None]
ProgressCallback = Callable[[int, int], None]
TransformFn = Callable[[Path, Path, Config], Path]
ProbeFn = Callable[[Path], str]

SEPARATOR = "=" * 40


class ItemScratch:
    """Per-item scratch directory, removed on every exit path.

    A failed removal is kept in ``warning`` instead of being raised so the
    item's outcome stays as recorded.
    """

    def __init__(self, run_dir: Path, index: int) -> None:
        self.path = run_dir / f"item_{index:05d}"
        self.warning = ""

    def __enter__(self) -> Path:
        self.path.mkdir(parents=True, exist_ok=True)
        return self.path

    def __exit__(self, *exc_info: object) -> None:
        try:
            shutil.rmtree(self.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            self.warning = f"清理警告: 无法删除临时文件 {self.path} ({exc})"


def process_archive(
    input_zip: Path,
    output_zip: Path,
    config: Config,
    log_cb: LogCallback | None = None,
    progress_cb: ProgressCallback | None = None,
    transform: TransformFn = transcode_to_height,
    probe: ProbeFn = probe_resolution,
) -> RunSummary:
    started_at = datetime.now()
    if input_zip.resolve() == output_zip.resolve():
        raise SetupError("输出压缩包不能与输入压缩包相同")

    _log(log_cb, SEPARATOR)
    _log(log_cb, f"视频批量转换为 {config.target_height}p")
    _log(log_cb, SEPARATOR)
    _log(log_cb, f"开始时间: {started_at:%Y-%m-%d %H:%M:%S}")
    _log(log_cb, f"输入: {input_zip}")
    _log(log_cb, f"输出: {output_zip}")
    _log(log_cb, "")

    with ArchiveReader(input_zip) as reader:
        _log(log_cb, "正在分析压缩包...")
        entries = reader.list_entries()
        videos = select_video_entries(entries, config)
        video_bytes = sum(entry.size for entry in videos)
        _log(log_cb, f"共发现 {len(videos)} 个视频文件待转换 ({format_size(video_bytes)})")
        _log(log_cb, "")

        # 先建临时目录，失败时不会清空已有的输出压缩包
        try:
            run_dir = Path(tempfile.mkdtemp(prefix="video_downscale_", dir=config.scratch_dir))
        except OSError as exc:
            scratch_root = config.scratch_dir or tempfile.gettempdir()
            raise SetupError(f"无法创建临时目录: {scratch_root} ({exc})") from exc

        writer = ArchiveWriter(output_zip, compress_level=config.compress_level)
        progress = ProgressState(len(videos))
        cleanup_warnings = 0
        try:
            writer.create()
            progress.start()
            if config.max_workers > 1 and len(videos) > 1:
                run_items = _run_parallel
            else:
                run_items = _run_sequential
            results = run_items(
                videos,
                reader,
                writer,
                config,
                run_dir,
                progress,
                transform,
                probe,
                log_cb,
                progress_cb,
            )
            cleanup_warnings = sum(1 for result in results if result.cleanup_warning)

            _log(log_cb, "正在复制目录结构到输出压缩包...")
            try:
                directories = replicate_directories(entries, writer)
            except AppendFailed as exc:
                directories = 0
                _log(log_cb, f"  错误: {exc}")
            output_entries = len(writer.namelist())
        finally:
            _log(log_cb, "正在清理临时文件...")
            try:
                shutil.rmtree(run_dir)
            except OSError as exc:
                cleanup_warnings += 1
                _log(log_cb, f"清理警告: 无法删除临时目录 {run_dir} ({exc})")

    summary = RunSummary(
        input_zip=input_zip,
        output_zip=output_zip,
        total=progress.total,
        success=progress.success,
        failed=progress.failed,
        started_at=started_at,
        finished_at=datetime.now(),
        input_size=input_zip.stat().st_size,
        output_size=output_zip.stat().st_size if output_zip.exists() else 0,
        directories=directories,
        cleanup_warnings=cleanup_warnings,
        output_entries=output_entries,
        results=tuple(sorted(results, key=lambda item: item.index)),
    )
    _log_summary(log_cb, summary)
    return summary


def _run_sequential(
    videos: list[ArchiveEntry],
    reader: ArchiveReader,
    writer: ArchiveWriter,
    config: Config,
    run_dir: Path,
    progress: ProgressState,
    transform: TransformFn,
    probe: ProbeFn,
    log_cb: LogCallback | None,
    progress_cb: ProgressCallback | None,
) -> list[ItemResult]:
    results: list[ItemResult] = []
    for index, entry in enumerate(videos):
        _log(log_cb, SEPARATOR)
        _log(log_cb, progress.status_line())
        _log(log_cb, f"文件: {entry.path}")

        result = _process_single(
            item=_new_work_item(index, entry, config),
            reader=reader,
            writer=writer,
            config=config,
            run_dir=run_dir,
            transform=transform,
            probe=probe,
            log=lambda message: _log(log_cb, message),
        )
        _record(progress, result)
        results.append(result)
        _log(log_cb, "")

        if progress_cb:
            progress_cb(progress.current_index, progress.total)
    return results


def _run_parallel(
    videos: list[ArchiveEntry],
    reader: ArchiveReader,
    writer: ArchiveWriter,
    config: Config,
    run_dir: Path,
    progress: ProgressState,
    transform: TransformFn,
    probe: ProbeFn,
    log_cb: LogCallback | None,
    progress_cb: ProgressCallback | None,
) -> list[ItemResult]:
    results: list[ItemResult] = []

    with ThreadPoolExecutor(max_workers=config.max_workers) as executor:
        futures = {
            executor.submit(
                _process_buffered,
                item=_new_work_item(index, entry, config),
                reader=reader,
                writer=writer,
                config=config,
                run_dir=run_dir,
                transform=transform,
                probe=probe,
            ): (index, entry)
            for index, entry in enumerate(videos)
        }

        # 计数只在当前线程更新
        for future in as_completed(futures):
            index, entry = futures[future]
            try:
                result, lines = future.result()
            except Exception as exc:  # noqa: BLE001
                result = ItemResult(
                    index=index,
                    source_path=entry.path,
                    output_name=derive_output_name(entry.path, config.output_suffix),
                    status="FAILED",
                    error=f"内部错误: {exc}",
                    duration_sec=0.0,
                )
                lines = [f"  错误: {result.error}"]

            _log(log_cb, SEPARATOR)
            _log(log_cb, progress.status_line())
            _log(log_cb, f"文件: {entry.path}")
            for line in lines:
                _log(log_cb, line)
            _record(progress, result)
            results.append(result)
            _log(log_cb, "")

            if progress_cb:
                progress_cb(progress.current_index, progress.total)

    return results


def _process_buffered(
    item: WorkItem,
    reader: ArchiveReader,
    writer: ArchiveWriter,
    config: Config,
    run_dir: Path,
    transform: TransformFn,
    probe: ProbeFn,
) -> tuple[ItemResult, list[str]]:
    lines: list[str] = []
    result = _process_single(
        item=item,
        reader=reader,
        writer=writer,
        config=config,
        run_dir=run_dir,
        transform=transform,
        probe=probe,
        log=lines.append,
    )
    return result, lines


def _process_single(
    item: WorkItem,
    reader: ArchiveReader,
    writer: ArchiveWriter,
    config: Config,
    run_dir: Path,
    transform: TransformFn,
    probe: ProbeFn,
    log: LogCallback,
) -> ItemResult:
    started_at = time.monotonic()
    original_size = 0
    new_size = 0
    scratch = ItemScratch(run_dir, item.index)

    try:
        with scratch as item_dir:
            log("  正在解压...")
            item.extracted_path = reader.extract_entry(item.source_path, item_dir / "source")
            item.outcome = "extracted"
            original_size = item.extracted_path.stat().st_size
            log(f"  原始: {probe(item.extracted_path) or '未知'} ({format_size(original_size)})")

            log(f"  正在转换为 {config.target_height}p...")
            item.converted_path = item_dir / "converted" / posixpath.basename(item.output_name)
            transform(item.extracted_path, item.converted_path, config)
            if not item.converted_path.is_file():
                raise TransformFailed(item.extracted_path, "未生成输出文件")
            item.outcome = "converted"
            new_size = item.converted_path.stat().st_size
            log(
                f"  转换后: {probe(item.converted_path) or '未知'} ({format_size(new_size)})"
                f" - 体积减少 {format_reduction(original_size, new_size)}"
            )

            writer.append_file(item.converted_path, item.output_name)
            item.outcome = "appended"
            log("  ✓ 已成功写入压缩包")
    except (ExtractionFailed, TransformFailed, AppendFailed) as exc:
        item.outcome = "failed"
        item.error = str(exc)
    except Exception as exc:  # noqa: BLE001
        item.outcome = "failed"
        item.error = f"未预期错误: {exc}"

    if item.outcome == "failed":
        log(f"  错误: {item.error}")
    if scratch.warning:
        log(scratch.warning)

    return ItemResult(
        index=item.index,
        source_path=item.source_path,
        output_name=item.output_name,
        status="SUCCESS" if item.outcome == "appended" else "FAILED",
        error=item.error,
        duration_sec=time.monotonic() - started_at,
        original_size=original_size,
        new_size=new_size if item.outcome == "appended" else 0,
        cleanup_warning=scratch.warning,
    )


def _new_work_item(index: int, entry: ArchiveEntry, config: Config) -> WorkItem:
    return WorkItem(
        index=index,
        source_path=entry.path,
        output_name=derive_output_name(entry.path, config.output_suffix),
    )


def _record(progress: ProgressState, result: ItemResult) -> None:
    if result.status == "SUCCESS":
        progress.record_success()
    else:
        progress.record_failure()


def _log_summary(log_cb: LogCallback | None, summary: RunSummary) -> None:
    _log(log_cb, "")
    _log(log_cb, SEPARATOR)
    _log(log_cb, "转换完成！")
    _log(log_cb, SEPARATOR)
    _log(log_cb, f"结束时间: {summary.finished_at:%Y-%m-%d %H:%M:%S}")
    _log(log_cb, f"视频总数: {summary.total}")
    _log(log_cb, f"成功: {summary.success}")
    _log(log_cb, f"失败: {summary.failed}")
    if summary.cleanup_warnings:
        _log(log_cb, f"清理警告: {summary.cleanup_warnings}")
    _log(log_cb, "")
    _log(log_cb, f"原始压缩包: {format_size(summary.input_size)}")
    if summary.output_zip.exists():
        _log(log_cb, f"新压缩包: {format_size(summary.output_size)}")
        _log(log_cb, f"新压缩包条目数: {summary.output_entries}")


def _log(log_cb: LogCallback | None, message: str) -> None:
    if log_cb:
        log_cb(message)
