from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal


Status = Literal["SUCCESS", "FAILED"]
Outcome = Literal["pending", "extracted", "converted", "appended", "failed"]


@dataclass(frozen=True)
class Config:
    target_height: int = 720
    crf: int = 23
    preset: str = "medium"
    audio_bitrate: str = "128k"
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    scratch_dir: Path | None = None
    video_extensions: tuple[str, ...] = (".mov", ".mp4")
    shadow_prefix: str = "._"
    task_timeout_sec: int = 0
    max_workers: int = 1
    compress_level: int = 9

    @property
    def output_suffix(self) -> str:
        return f"_{self.target_height}p"


@dataclass(frozen=True)
class ArchiveEntry:
    path: str
    is_directory: bool
    size: int = 0


@dataclass
class WorkItem:
    index: int
    source_path: str
    output_name: str
    extracted_path: Path | None = None
    converted_path: Path | None = None
    outcome: Outcome = "pending"
    error: str = ""


@dataclass(frozen=True)
class ItemResult:
    index: int
    source_path: str
    output_name: str
    status: Status
    error: str
    duration_sec: float
    original_size: int = 0
    new_size: int = 0
    cleanup_warning: str = ""


@dataclass(frozen=True)
class RunSummary:
    input_zip: Path
    output_zip: Path
    total: int
    success: int
    failed: int
    started_at: datetime
    finished_at: datetime
    input_size: int
    output_size: int
    directories: int = 0
    cleanup_warnings: int = 0
    output_entries: int = 0
    results: tuple[ItemResult, ...] = field(default_factory=tuple)
