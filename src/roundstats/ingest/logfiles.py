"""
On-disk layout of server logs and checkpoints.

Each dedicated server writes one append-only log, ``latest_server<N>.log``,
into the logs directory. Its checkpoint lives next to it in
``checkpoint_server<N>.txt`` and holds a single integer.

Line counts everywhere in this package ignore blank lines, so offsets stay
stable when a server pads its output with empty lines.
"""

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

LOG_FILE_TEMPLATE = "latest_server{server_id}.log"
CHECKPOINT_FILE_TEMPLATE = "checkpoint_server{server_id}.txt"

LOG_FILE_PATTERN = re.compile(r"^latest_server(\d+)\.log$")


def log_file_path(logs_dir: Path | str, server_id: int) -> Path:
    return Path(logs_dir) / LOG_FILE_TEMPLATE.format(server_id=server_id)


def checkpoint_file_path(logs_dir: Path | str, server_id: int) -> Path:
    return Path(logs_dir) / CHECKPOINT_FILE_TEMPLATE.format(server_id=server_id)


def server_id_from_filename(name: str) -> int | None:
    """Return N for ``latest_server<N>.log``, None for anything else."""
    match = LOG_FILE_PATTERN.match(name)
    return int(match.group(1)) if match else None


def split_log_lines(content: str) -> list[str]:
    """Split log text into its non-blank lines."""
    return [line for line in content.split("\n") if line.strip() != ""]


def read_log_lines(path: Path) -> list[str]:
    """Read a log file as non-blank lines; undecodable bytes are replaced."""
    content = path.read_text(encoding="utf-8", errors="replace")
    return split_log_lines(content)
