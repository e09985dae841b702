from .archive import (
    AppendFailed,
    ArchiveReader,
    ArchiveUnreadable,
    ArchiveWriter,
    ExtractionFailed,
    derive_output_name,
    is_video_entry,
    replicate_directories,
    select_video_entries,
)
from .artifact import build_result_csv, write_result_csv
from .config import SetupError, ensure_runtime, load_config, validate_runtime
from .ffmpeg_pipeline import TransformFailed, transcode_to_height
from .models import ArchiveEntry, Config, ItemResult, RunSummary, WorkItem
from .progress import ProgressState
from .runner import process_archive

__all__ = [
    "AppendFailed",
    "ArchiveEntry",
    "ArchiveReader",
    "ArchiveUnreadable",
    "ArchiveWriter",
    "Config",
    "ExtractionFailed",
    "ItemResult",
    "ProgressState",
    "RunSummary",
    "SetupError",
    "TransformFailed",
    "WorkItem",
    "build_result_csv",
    "derive_output_name",
    "ensure_runtime",
    "is_video_entry",
    "load_config",
    "process_archive",
    "replicate_directories",
    "select_video_entries",
    "transcode_to_height",
    "validate_runtime",
    "write_result_csv",
]
