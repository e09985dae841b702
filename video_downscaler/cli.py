"""Command-line entry point.

Usage:
    python -m video_downscaler videos_all.zip videos_all_720p.zip
    python -m video_downscaler in.zip out.zip --target-height 480 --crf 26
    python -m video_downscaler in.zip out.zip --max-workers 2 --timeout 3600
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from .artifact import default_report_path, write_result_csv
from .config import SetupError, ensure_runtime, load_config, parse_extensions
from .models import Config
from .runner import process_archive

log = logging.getLogger("video_downscaler")


def _setup_logging(*, verbose: bool, log_file: Path) -> None:
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    root_level = logging.DEBUG if verbose else logging.INFO
    root_logger.setLevel(root_level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(root_level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s | %(levelname)-8s | %(message)s", "%Y-%m-%d %H:%M:%S")
    )
    root_logger.addHandler(file_handler)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Convert every video inside a zip archive to 720p and write a new zip"
    )
    parser.add_argument("input_zip", type=Path, help="Source archive")
    parser.add_argument("output_zip", type=Path, help="Destination archive (overwritten)")
    parser.add_argument("--target-height", type=int, help="Output vertical resolution (default: 720)")
    parser.add_argument("--crf", type=int, help="x264 quality/size trade-off (default: 23)")
    parser.add_argument("--preset", help="x264 speed/quality preset (default: medium)")
    parser.add_argument("--audio-bitrate", help="AAC bitrate (default: 128k)")
    parser.add_argument("--scratch-dir", type=Path, help="Where entries are extracted while converting")
    parser.add_argument(
        "--extensions",
        help="Comma separated video extensions, case-insensitive (default: .mov,.mp4)",
    )
    parser.add_argument("--shadow-prefix", help="Skip path segments starting with this (default: ._)")
    parser.add_argument(
        "--timeout",
        type=int,
        help="Kill a single ffmpeg run after this many seconds (default: no limit)",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        help="Convert this many entries at once (default: 1)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        help="Append-only run log (default: conversion_log_<timestamp>.txt)",
    )
    parser.add_argument(
        "--report",
        type=Path,
        help="Per-file result CSV (default: <output>_result.csv)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def _apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    overrides: dict[str, object] = {}
    if args.target_height is not None:
        overrides["target_height"] = args.target_height
    if args.crf is not None:
        overrides["crf"] = args.crf
    if args.preset:
        overrides["preset"] = args.preset
    if args.audio_bitrate:
        overrides["audio_bitrate"] = args.audio_bitrate
    if args.scratch_dir is not None:
        overrides["scratch_dir"] = args.scratch_dir
    if args.extensions:
        extensions = parse_extensions(args.extensions)
        if extensions:
            overrides["video_extensions"] = extensions
    if args.shadow_prefix:
        overrides["shadow_prefix"] = args.shadow_prefix
    if args.timeout is not None:
        overrides["task_timeout_sec"] = max(args.timeout, 0)
    if args.max_workers is not None:
        overrides["max_workers"] = max(args.max_workers, 1)
    return replace(config, **overrides)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    log_file = args.log_file or Path(f"conversion_log_{datetime.now():%Y%m%d_%H%M%S}.txt")
    _setup_logging(verbose=args.verbose, log_file=log_file)

    config = _apply_overrides(load_config(), args)
    log.debug("config: %s", config)

    try:
        ensure_runtime(config, args.input_zip, args.output_zip)
        summary = process_archive(
            input_zip=args.input_zip,
            output_zip=args.output_zip,
            config=config,
            log_cb=log.info,
        )
    except SetupError as exc:
        log.error("错误: %s", exc)
        return 1

    report_path = write_result_csv(summary.results, args.report or default_report_path(args.output_zip))
    log.info("")
    log.info("结果清单已保存到: %s", report_path)
    log.info("日志已保存到: %s", log_file)
    return 0
