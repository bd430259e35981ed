import os
import shutil
import time
from pathlib import Path

from logitforest.gradio_ui import _prune_old_runs


def create_run_dirs(root: Path, count: int, base_time: float = None):
    if base_time is None:
        base_time = time.time()
    dirs = []
    for i in range(count):
        d = root / f"run_{i:03d}"
        d.mkdir(parents=True, exist_ok=True)
        # set mtime spaced by i seconds so higher i -> newer
        mtime = base_time + i
        os.utime(d, (mtime, mtime))
        dirs.append(d)
    return dirs


def test_prune_keeps_newest(tmp_path):
    root = tmp_path / "gradio_runs"
    root.mkdir()
    dirs = create_run_dirs(root, 5)
    _prune_old_runs(root, keep=2)
    remaining = sorted([p.name for p in root.iterdir() if p.is_dir()])
    assert set(remaining) == {dirs[-1].name, dirs[-2].name}


def test_prune_orders_timestamp_dirs_by_name(tmp_path):
    root = tmp_path / "gradio_runs"
    root.mkdir()
    names = ["20250101T000000", "20250102T000000", "20250103T000000"]
    now = time.time()
    for i, name in enumerate(names):
        d = root / name
        d.mkdir()
        # mtimes deliberately reversed
        os.utime(d, (now - i, now - i))
    _prune_old_runs(root, keep=1)
    assert [p.name for p in root.iterdir()] == ["20250103T000000"]


def test_prune_env_var_override_and_disable(tmp_path, monkeypatch):
    root = tmp_path / "gradio_runs"
    root.mkdir()
    dirs = create_run_dirs(root, 6)
    monkeypatch.setenv("LOGITFOREST_GRADIO_RETENTION_KEEP", "3")
    _prune_old_runs(root)
    remaining = sorted([p.name for p in root.iterdir() if p.is_dir()])
    assert set(remaining) == {d.name for d in dirs[-3:]}

    for p in list(root.iterdir()):
        if p.is_dir():
            shutil.rmtree(p)
    create_run_dirs(root, 4)
    monkeypatch.setenv("LOGITFOREST_GRADIO_RETENTION_KEEP", "0")
    _prune_old_runs(root)
    assert len([p for p in root.iterdir() if p.is_dir()]) == 4


def test_prune_missing_root_is_noop(tmp_path):
    _prune_old_runs(tmp_path / "does_not_exist", keep=1)
