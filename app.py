from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pandas as pd
import streamlit as st

from video_downscaler.artifact import build_result_csv
from video_downscaler.config import SetupError, load_config, validate_runtime
from video_downscaler.models import RunSummary
from video_downscaler.progress import format_size
from video_downscaler.runner import process_archive


st.set_page_config(page_title="视频压缩包降分辨率工具", layout="wide")
st.title("Python + Streamlit 视频压缩包 720p 转换工具")

config = load_config()

st.caption(
    "当前配置: "
    f"target_height={config.target_height} | "
    f"crf={config.crf} | "
    f"preset={config.preset} | "
    f"audio_bitrate={config.audio_bitrate} | "
    f"extensions={','.join(config.video_extensions)} | "
    f"max_workers={config.max_workers} | "
    f"task_timeout_sec={config.task_timeout_sec or '不限'}"
)

with st.expander("输入说明", expanded=False):
    st.markdown(
        "\n".join(
            [
                "- 填写服务器本地的输入 zip 路径和输出 zip 路径",
                "- 输出压缩包若已存在会被覆盖",
                "- 逐个解压、转换、写入，临时空间只占用一个视频",
                f"- 输出文件名在扩展名前追加 `{config.output_suffix}`，目录结构保持不变",
                f"- 以 `{config.shadow_prefix}` 开头的元数据文件会被跳过",
            ]
        )
    )

input_col, output_col = st.columns(2)
with input_col:
    input_zip_text = st.text_input("输入压缩包路径", placeholder="/data/videos_all.zip")
with output_col:
    output_zip_text = st.text_input("输出压缩包路径", placeholder="/data/videos_all_720p.zip")

if "vd_summary" not in st.session_state:
    st.session_state["vd_summary"] = None
if "vd_logs" not in st.session_state:
    st.session_state["vd_logs"] = []


start_clicked = st.button("开始转换", type="primary")

if start_clicked:
    st.session_state["vd_summary"] = None
    st.session_state["vd_logs"] = []

    input_zip = Path(input_zip_text.strip()).expanduser() if input_zip_text.strip() else None
    output_zip = Path(output_zip_text.strip()).expanduser() if output_zip_text.strip() else None

    if input_zip is None or output_zip is None:
        st.warning("请填写输入和输出压缩包路径。")
    else:
        runtime_errors = validate_runtime(config, input_zip, output_zip)
        if runtime_errors:
            st.error("运行前置检查未通过：\n- " + "\n- ".join(runtime_errors))
        else:
            progress_box = st.progress(0)
            log_box = st.empty()
            logs: list[str] = []

            def log_cb(message: str) -> None:
                ts = datetime.now().strftime("%H:%M:%S")
                logs.append(f"[{ts}] {message}")
                log_box.code("\n".join(logs[-200:]))

            def progress_cb(done: int, total: int) -> None:
                ratio = 1.0 if total == 0 else done / total
                progress_box.progress(min(max(ratio, 0.0), 1.0))

            try:
                summary = process_archive(
                    input_zip=input_zip,
                    output_zip=output_zip,
                    config=config,
                    log_cb=log_cb,
                    progress_cb=progress_cb,
                )
            except SetupError as exc:
                st.error(str(exc))
            else:
                progress_cb(1, 1)
                st.session_state["vd_summary"] = summary
            st.session_state["vd_logs"] = logs

if st.session_state.get("vd_summary") is not None:
    summary: RunSummary = st.session_state["vd_summary"]
    logs = st.session_state.get("vd_logs", [])

    st.subheader("汇总")
    total_col, success_col, failed_col, size_col = st.columns(4)
    total_col.metric("视频总数", summary.total)
    success_col.metric("成功", summary.success)
    failed_col.metric("失败", summary.failed)
    size_col.metric(
        "压缩包大小",
        format_size(summary.output_size),
        delta=f"原始 {format_size(summary.input_size)}",
        delta_color="off",
    )

    st.subheader("结果表")
    table_rows = [
        {
            "source_path": item.source_path,
            "output_path": item.output_name if item.status == "SUCCESS" else "",
            "status": item.status,
            "error": item.error,
            "duration_sec": round(item.duration_sec, 3),
            "original_size": format_size(item.original_size),
            "new_size": format_size(item.new_size) if item.status == "SUCCESS" else "",
        }
        for item in summary.results
    ]
    st.dataframe(pd.DataFrame(table_rows), use_container_width=True)

    st.subheader("运行日志")
    st.code("\n".join(logs[-500:]) if logs else "(无日志)")

    st.download_button(
        label="下载结果清单：result.csv",
        data=build_result_csv(summary.results),
        file_name=f"{summary.output_zip.stem}_result.csv",
        mime="text/csv",
    )
