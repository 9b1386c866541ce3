from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_SPROC_COMMAND = "./sproc_lim"
DEFAULT_SPROC_TIMEOUT_S = 60
DEFAULT_FETCH_TIMEOUT_S = 30
DEFAULT_FETCH_MAX_BYTES = 25_000_000
DEFAULT_HISTORY_CAPACITY = 16
DEFAULT_LILYPOND_TIMEOUT_S = 60

MIN_TIMEOUT_S = 5
MAX_TIMEOUT_S = 600


def _int_env(var: str, default: int, *, min_val: int, max_val: int) -> int:
    raw = os.environ.get(var)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError:
        return default
    return max(min_val, min(max_val, parsed))


def _command_env(var: str, default: str) -> list[str]:
    raw = (os.environ.get(var) or "").strip()
    parts = shlex.split(raw) if raw else []
    return parts or shlex.split(default)


@dataclass(frozen=True, slots=True)
class Settings:
    sproc_command: list[str] = field(default_factory=lambda: shlex.split(DEFAULT_SPROC_COMMAND))
    sproc_timeout_s: int = DEFAULT_SPROC_TIMEOUT_S
    fetch_timeout_s: int = DEFAULT_FETCH_TIMEOUT_S
    fetch_max_bytes: int = DEFAULT_FETCH_MAX_BYTES
    history_capacity: int = DEFAULT_HISTORY_CAPACITY
    data_dir: Path = Path("data")
    lilypond_command: str = "lilypond"
    lilypond_timeout_s: int = DEFAULT_LILYPOND_TIMEOUT_S
    timidity_command: str = "timidity"
    ffmpeg_command: str = "ffmpeg"

    @property
    def kv_path(self) -> Path:
        return self.data_dir / "kv.sqlite"

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            sproc_command=_command_env("SPROC_COMMAND", DEFAULT_SPROC_COMMAND),
            sproc_timeout_s=_int_env(
                "SPROC_TIMEOUT_S",
                DEFAULT_SPROC_TIMEOUT_S,
                min_val=MIN_TIMEOUT_S,
                max_val=MAX_TIMEOUT_S,
            ),
            fetch_timeout_s=_int_env(
                "FETCH_TIMEOUT_S", DEFAULT_FETCH_TIMEOUT_S, min_val=1, max_val=300
            ),
            fetch_max_bytes=_int_env(
                "FETCH_MAX_BYTES",
                DEFAULT_FETCH_MAX_BYTES,
                min_val=1_000,
                max_val=500_000_000,
            ),
            history_capacity=_int_env(
                "HISTORY_CAPACITY", DEFAULT_HISTORY_CAPACITY, min_val=1, max_val=256
            ),
            data_dir=Path(os.environ.get("BOT_DATA_DIR") or "data"),
            lilypond_command=os.environ.get("LILYPOND_COMMAND") or "lilypond",
            lilypond_timeout_s=_int_env(
                "LILYPOND_TIMEOUT_S",
                DEFAULT_LILYPOND_TIMEOUT_S,
                min_val=MIN_TIMEOUT_S,
                max_val=MAX_TIMEOUT_S,
            ),
            timidity_command=os.environ.get("TIMIDITY_COMMAND") or "timidity",
            ffmpeg_command=os.environ.get("FFMPEG_COMMAND") or "ffmpeg",
        )
