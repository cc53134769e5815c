import json
import os
import secrets
from datetime import datetime, timezone
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any

from pydantic import BaseModel


def make_timestamp() -> str:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
    return f"{timestamp}_{os.getpid()}_{secrets.token_hex(3)}"


def ensure_runs_dir(path: str = "runs") -> None:
    Path(path).mkdir(parents=True, exist_ok=True)


def _as_dict(value: dict[str, Any] | BaseModel) -> dict[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with NamedTemporaryFile("w", encoding="utf-8", dir=path.parent, delete=False) as tmp_file:
        tmp_file.write(content)
        tmp_path = Path(tmp_file.name)
    os.replace(tmp_path, path)


def save_exchange(
    prompt: str,
    raw: str,
    summary: dict[str, Any] | BaseModel,
    runs_dir: str = "runs",
) -> dict[str, str]:
    """Persist one prompt/response pair plus the reconciliation summary."""
    ensure_runs_dir(runs_dir)
    ts = make_timestamp()

    prompt_path = Path(runs_dir) / f"prompt_{ts}.txt"
    raw_path = Path(runs_dir) / f"raw_{ts}.txt"
    summary_path = Path(runs_dir) / f"summary_{ts}.json"

    atomic_write(prompt_path, prompt)
    atomic_write(raw_path, raw)
    atomic_write(
        summary_path,
        json.dumps(_as_dict(summary), separators=(",", ":"), sort_keys=True, ensure_ascii=False),
    )

    return {
        "prompt_path": str(prompt_path),
        "raw_path": str(raw_path),
        "summary_path": str(summary_path),
    }


def save_generator_error(raw: str, error: str, kind: str, runs_dir: str = "runs") -> str:
    ensure_runs_dir(runs_dir)
    ts = make_timestamp()
    err_path = Path(runs_dir) / f"generator_error_{ts}.txt"

    contents = (
        f"GENERATOR_FAILURE\n"
        f"kind: {kind}\n"
        f"error: {error}\n\n"
        f"---- RAW OUTPUT ----\n{raw}"
    )
    atomic_write(err_path, contents)
    return str(err_path)
