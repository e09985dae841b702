from __future__ import annotations

import os
import shutil
import zipfile
from pathlib import Path

from .models import Config


X264_PRESETS = (
    "ultrafast",
    "superfast",
    "veryfast",
    "faster",
    "fast",
    "medium",
    "slow",
    "slower",
    "veryslow",
)


class SetupError(RuntimeError):
    pass


def _read_positive_int(env_name: str, default: int) -> int:
    raw = os.getenv(env_name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _read_int_in_range(env_name: str, default: int, low: int, high: int) -> int:
    raw = os.getenv(env_name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if low <= value <= high else default


def parse_extensions(raw: str) -> tuple[str, ...]:
    extensions: list[str] = []
    for part in raw.split(","):
        ext = part.strip().lower()
        if not ext:
            continue
        if not ext.startswith("."):
            ext = f".{ext}"
        if ext not in extensions:
            extensions.append(ext)
    return tuple(extensions)


def _read_extensions(env_name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(env_name)
    if raw is None:
        return default
    return parse_extensions(raw) or default


def load_config() -> Config:
    defaults = Config()
    scratch_raw = os.getenv("VD_SCRATCH_DIR")
    return Config(
        target_height=_read_positive_int("VD_TARGET_HEIGHT", defaults.target_height),
        crf=_read_int_in_range("VD_CRF", defaults.crf, 0, 51),
        preset=os.getenv("VD_PRESET", defaults.preset).strip() or defaults.preset,
        audio_bitrate=os.getenv("VD_AUDIO_BITRATE", defaults.audio_bitrate).strip()
        or defaults.audio_bitrate,
        scratch_dir=Path(scratch_raw).expanduser() if scratch_raw else None,
        video_extensions=_read_extensions("VD_VIDEO_EXTENSIONS", defaults.video_extensions),
        shadow_prefix=os.getenv("VD_SHADOW_PREFIX", defaults.shadow_prefix) or defaults.shadow_prefix,
        task_timeout_sec=_read_int_in_range(
            "VD_TASK_TIMEOUT_SEC", defaults.task_timeout_sec, 0, 7 * 24 * 3600
        ),
        max_workers=_read_positive_int("VD_MAX_WORKERS", defaults.max_workers),
        compress_level=_read_int_in_range("VD_COMPRESS_LEVEL", defaults.compress_level, 0, 9),
    )


def _nearest_existing(path: Path) -> Path:
    for candidate in (path, *path.parents):
        if candidate.exists():
            return candidate
    return path


def validate_runtime(
    config: Config,
    input_zip: Path | None = None,
    output_zip: Path | None = None,
) -> list[str]:
    errors: list[str] = []
    if shutil.which("ffmpeg") is None:
        errors.append("未找到 ffmpeg 可执行文件")
    if shutil.which("ffprobe") is None:
        errors.append("未找到 ffprobe 可执行文件")
    if config.target_height % 2 != 0:
        errors.append(f"目标高度必须为偶数: {config.target_height}")
    if config.video_codec == "libx264" and config.preset not in X264_PRESETS:
        errors.append(f"不支持的编码预设: {config.preset}")
    if config.scratch_dir is not None and not config.scratch_dir.is_dir():
        errors.append(f"临时目录不存在: {config.scratch_dir}")
    if input_zip is not None:
        if not input_zip.is_file():
            errors.append(f"输入压缩包不存在: {input_zip}")
        elif not zipfile.is_zipfile(input_zip):
            errors.append(f"输入文件不是有效的 zip 压缩包: {input_zip}")
    if output_zip is not None:
        anchor = _nearest_existing(output_zip.parent)
        if not anchor.is_dir() or not os.access(anchor, os.W_OK):
            errors.append(f"无法写入输出目录: {output_zip.parent}")
    return errors


def ensure_runtime(
    config: Config,
    input_zip: Path | None = None,
    output_zip: Path | None = None,
) -> None:
    errors = validate_runtime(config, input_zip, output_zip)
    if errors:
        raise SetupError("; ".join(errors))
