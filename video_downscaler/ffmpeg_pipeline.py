from __future__ import annotations

import json
import subprocess
from pathlib import Path

from .models import Config


class TransformFailed(RuntimeError):
    def __init__(self, input_path: Path, diagnostic: str = "") -> None:
        self.input_path = input_path
        self.diagnostic = diagnostic
        message = f"转换失败: {input_path.name}"
        if diagnostic:
            message = f"{message} ({diagnostic})"
        super().__init__(message)


def probe_resolution(video_path: Path) -> str:
    cmd = [
        "ffprobe",
        "-v",
        "error",
        "-select_streams",
        "v:0",
        "-show_entries",
        "stream=width,height",
        "-print_format",
        "json",
        str(video_path),
    ]

    # 分辨率只用于日志展示，探测失败不影响转换结果
    try:
        completed = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=True,
            timeout=60,
        )
        payload = json.loads(completed.stdout)
    except (OSError, subprocess.SubprocessError, json.JSONDecodeError):
        return ""

    streams = payload.get("streams", [])
    if not streams:
        return ""
    width = int(streams[0].get("width") or 0)
    height = int(streams[0].get("height") or 0)
    if width <= 0 or height <= 0:
        return ""
    return f"{width}x{height}"


def build_transcode_command(source_video: Path, output_video: Path, config: Config) -> list[str]:
    # -2: 按比例缩放宽度并取偶数，yuv420p 不接受奇数宽度
    return [
        "ffmpeg",
        "-y",
        "-hide_banner",
        "-loglevel",
        "error",
        "-i",
        str(source_video),
        "-vf",
        f"scale=-2:{config.target_height}",
        "-c:v",
        config.video_codec,
        "-crf",
        str(config.crf),
        "-preset",
        config.preset,
        "-pix_fmt",
        "yuv420p",
        "-c:a",
        config.audio_codec,
        "-b:a",
        config.audio_bitrate,
        "-movflags",
        "+faststart",
        str(output_video),
    ]


def transcode_to_height(source_video: Path, output_video: Path, config: Config) -> Path:
    output_video.parent.mkdir(parents=True, exist_ok=True)
    cmd = build_transcode_command(source_video, output_video, config)
    timeout = config.task_timeout_sec if config.task_timeout_sec > 0 else None

    try:
        subprocess.run(
            cmd,
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        output_video.unlink(missing_ok=True)
        raise TransformFailed(source_video, f"ffmpeg 处理超时（{config.task_timeout_sec} 秒）") from exc
    except subprocess.CalledProcessError as exc:
        output_video.unlink(missing_ok=True)
        stderr = (exc.stderr or "").strip()
        message = stderr.splitlines()[-1] if stderr else f"ffmpeg 退出码 {exc.returncode}"
        raise TransformFailed(source_video, message) from exc
    except OSError as exc:
        raise TransformFailed(source_video, f"无法启动 ffmpeg: {exc}") from exc

    # 退出码为 0 不代表一定产出了文件
    if not output_video.is_file():
        raise TransformFailed(source_video, "ffmpeg 返回成功但未生成输出文件")
    return output_video
