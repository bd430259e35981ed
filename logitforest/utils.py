from __future__ import annotations

import dataclasses
import datetime as _dt
import hashlib
import json
import logging
import math
import threading
import time
import zipfile
from enum import Enum
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)


# -------------------------
# Path utilities
# -------------------------
def normalize_abs_posix(path: str | Path) -> str:
    """
    Return an absolute POSIX-style path string for the given input.
    Ensures deterministic representation across platforms.
    """
    p = Path(path).resolve()
    return p.as_posix()


# -------------------------
# Hashing utilities
# -------------------------
def canonical_json_dumps(payload: dict[str, Any]) -> str:
    """
    Deterministic JSON string for hashing and storage:
    - separators=(',', ':')
    - sort_keys=True
    - ensure_ascii=False
    """
    return json.dumps(
        payload, ensure_ascii=False, separators=(",", ":"), sort_keys=True
    )


def canonical_json_hash(payload: dict[str, Any]) -> tuple[str, str]:
    """
    Return (short_hash8, full_hash_hex) computed over canonical JSON bytes (UTF-8).
    """
    s = canonical_json_dumps(payload)
    h = hashlib.sha256(s.encode("utf-8")).hexdigest()
    return h[:8], h


# -------------------------
# Manifest helpers
# -------------------------
def sanitize_for_json(obj: Any) -> Any:
    """
    Recursively convert parameter objects into JSON-serializable primitives.

    Conversions performed:
    - pathlib.Path -> normalized POSIX string
    - Enum -> member name
    - dataclasses -> dict of sanitized fields
    - non-finite floats -> None (JSON has no NaN)
    - dict -> dict with string keys; list/tuple/set -> list
    - datetime -> ISO-8601 string
    """
    if obj is None or isinstance(obj, (bool, int, str)):
        return obj
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None
    if isinstance(obj, Path):
        return normalize_abs_posix(obj)
    if isinstance(obj, Enum):
        return obj.name
    if isinstance(obj, _dt.datetime):
        return obj.isoformat()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {
            f.name: sanitize_for_json(getattr(obj, f.name))
            for f in dataclasses.fields(obj)
        }
    if isinstance(obj, dict):
        return {str(k): sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [sanitize_for_json(x) for x in obj]
    return str(obj)


def build_effective_parameters(load: Any, markers: Any) -> dict[str, Any]:
    """
    JSON-serializable mapping of the effective load parameters and marker
    configuration, shaped as {"load": {...}, "markers": {...}}.
    """
    return {
        "load": sanitize_for_json(load),
        "markers": sanitize_for_json(markers),
    }


def write_manifest(path: str | Path, manifest: Dict[str, Any]) -> None:
    """
    Write manifest JSON with UTF-8 encoding and stable formatting (indent=2 for readability).
    """
    p = Path(path)
    p.write_text(json.dumps(manifest, ensure_ascii=False, indent=2), encoding="utf-8")


def utc_timestamp_seconds() -> str:
    """
    ISO-8601 UTC timestamp with seconds precision and Z suffix.
    """
    now = _dt.datetime.now(_dt.timezone.utc).replace(tzinfo=None)
    return now.isoformat(timespec="seconds") + "Z"


# -------------------------
# Small orchestration helpers (shared by CLI and Gradio UI)
# -------------------------
def ensure_run_dir(base: Path | str = ".", prefix: str = "output") -> Path:
    """
    Ensure and return a per-run directory under `base`/`prefix`/<timestamp>.

    The timestamp format is YYYYmmddTHHMMSS (local time), which sorts
    chronologically by name.
    """
    run_ts = time.strftime("%Y%m%dT%H%M%S", time.localtime())
    run_dir = Path(base) / prefix / run_ts
    run_dir.mkdir(parents=True, exist_ok=True)
    logger.debug("Ensured run_dir=%s", str(run_dir))
    return run_dir


def create_zip_async(zip_path: str, artifact_paths: list[Path]) -> threading.Thread:
    """
    Create a ZIP archive at zip_path containing artifact_paths in a background daemon thread.

    The returned Thread is already started. Failures inside the thread are
    logged; the thread does not raise to the caller.
    """

    def _worker(zip_path_local: str, paths: list[Path]) -> None:
        try:
            with zipfile.ZipFile(
                zip_path_local, "w", compression=zipfile.ZIP_DEFLATED
            ) as zf:
                for p in paths:
                    pth = Path(p)
                    if pth.exists():
                        zf.write(str(pth), arcname=pth.name)
                    else:
                        logger.debug("Skipping missing artifact for zip: %s", str(pth))
            logger.debug("Async zip created at %s", zip_path_local)
        except Exception as e:
            logger.warning("Async zip failed for %s: %s", zip_path_local, e)

    thread = threading.Thread(
        target=_worker, args=(zip_path, list(artifact_paths)), daemon=True
    )
    thread.start()
    return thread
