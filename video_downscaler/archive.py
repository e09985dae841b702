from __future__ import annotations

import posixpath
import threading
import time
import zipfile
import zlib
from pathlib import Path
from typing import Iterable

from .config import SetupError
from .models import ArchiveEntry, Config


class ArchiveUnreadable(SetupError):
    pass


class ExtractionFailed(RuntimeError):
    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        message = f"解压失败: {path}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class AppendFailed(RuntimeError):
    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        message = f"写入压缩包失败: {path}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


_READ_ERRORS = (
    KeyError,
    OSError,
    EOFError,
    RuntimeError,
    NotImplementedError,
    zipfile.BadZipFile,
    zlib.error,
)


def is_video_entry(entry: ArchiveEntry, extensions: Iterable[str], shadow_prefix: str = "._") -> bool:
    if entry.is_directory or entry.path.endswith("/"):
        return False
    if shadow_prefix and any(part.startswith(shadow_prefix) for part in entry.path.split("/")):
        return False
    ext = posixpath.splitext(entry.path)[1].lower()
    return ext in {item.lower() for item in extensions}


def select_video_entries(entries: list[ArchiveEntry], config: Config) -> list[ArchiveEntry]:
    return [
        entry
        for entry in entries
        if is_video_entry(entry, config.video_extensions, config.shadow_prefix)
    ]


def derive_output_name(internal_path: str, suffix: str) -> str:
    directory, filename = posixpath.split(internal_path)
    stem, ext = posixpath.splitext(filename)
    renamed = f"{stem}{suffix}{ext}"
    return posixpath.join(directory, renamed) if directory else renamed


class ArchiveReader:
    """Read-only view over the source zip; entries are extracted one at a time."""

    def __init__(self, zip_path: Path) -> None:
        self.zip_path = zip_path
        self._archive: zipfile.ZipFile | None = None

    def __enter__(self) -> ArchiveReader:
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def open(self) -> None:
        if self._archive is not None:
            return
        try:
            self._archive = zipfile.ZipFile(self.zip_path, mode="r")
        except (OSError, zipfile.BadZipFile) as exc:
            raise ArchiveUnreadable(f"无法读取输入压缩包: {self.zip_path} ({exc})") from exc

    def close(self) -> None:
        if self._archive is not None:
            self._archive.close()
            self._archive = None

    def list_entries(self) -> list[ArchiveEntry]:
        archive = self._require_open()
        try:
            infos = archive.infolist()
        except (OSError, zipfile.BadZipFile) as exc:
            raise ArchiveUnreadable(f"无法解析输入压缩包目录: {self.zip_path} ({exc})") from exc
        return [
            ArchiveEntry(path=info.filename, is_directory=info.is_dir(), size=info.file_size)
            for info in infos
        ]

    def extract_entry(self, path: str, destination_root: Path) -> Path:
        archive = self._require_open()
        try:
            extracted = archive.extract(path, path=destination_root)
        except _READ_ERRORS as exc:
            raise ExtractionFailed(path, str(exc) or type(exc).__name__) from exc
        extracted_path = Path(extracted)
        if not extracted_path.is_file():
            raise ExtractionFailed(path, "解压后文件不存在")
        return extracted_path

    def _require_open(self) -> zipfile.ZipFile:
        if self._archive is None:
            self.open()
        assert self._archive is not None
        return self._archive


class ArchiveWriter:
    """Grows the destination zip one entry per call.

    Each call reopens the archive in append mode and closes it again, so the
    central directory is rewritten and the file stays openable after every
    append. Calls are serialized with a lock.
    """

    def __init__(self, zip_path: Path, compress_level: int = 9) -> None:
        self.zip_path = zip_path
        self.compress_level = compress_level
        self._lock = threading.Lock()

    def create(self) -> None:
        with self._lock:
            try:
                self.zip_path.parent.mkdir(parents=True, exist_ok=True)
                with zipfile.ZipFile(self.zip_path, mode="w"):
                    pass
            except OSError as exc:
                raise SetupError(f"无法创建输出压缩包: {self.zip_path} ({exc})") from exc

    def namelist(self) -> list[str]:
        with self._lock:
            if not self.zip_path.exists():
                return []
            with zipfile.ZipFile(self.zip_path, mode="r") as archive:
                return archive.namelist()

    def append_file(self, local_path: Path, internal_path: str) -> None:
        with self._lock:
            try:
                with zipfile.ZipFile(
                    self.zip_path,
                    mode="a",
                    compression=zipfile.ZIP_DEFLATED,
                    compresslevel=self.compress_level,
                ) as archive:
                    if internal_path in archive.namelist():
                        raise AppendFailed(internal_path, "压缩包中已存在同名条目")
                    archive.write(local_path, arcname=internal_path)
            except AppendFailed:
                raise
            except (OSError, ValueError, zipfile.BadZipFile, zlib.error) as exc:
                raise AppendFailed(internal_path, str(exc)) from exc

    def add_directory_marker(self, internal_path: str) -> bool:
        name = internal_path if internal_path.endswith("/") else f"{internal_path}/"
        with self._lock:
            try:
                with zipfile.ZipFile(self.zip_path, mode="a") as archive:
                    if name in archive.namelist():
                        return False
                    info = zipfile.ZipInfo(name, date_time=time.localtime()[:6])
                    info.external_attr = (0o40755 << 16) | 0x10
                    archive.writestr(info, b"")
            except (OSError, ValueError, zipfile.BadZipFile) as exc:
                raise AppendFailed(name, str(exc)) from exc
        return True


def replicate_directories(entries: list[ArchiveEntry], writer: ArchiveWriter) -> int:
    added = 0
    for entry in entries:
        if not entry.is_directory:
            continue
        if writer.add_directory_marker(entry.path):
            added += 1
    return added
