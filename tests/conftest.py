from __future__ import annotations

import os
import shutil
import uuid
from pathlib import Path
from typing import Iterator

import pytest


@pytest.fixture(scope="session", autouse=True)
def _default_store_paths() -> Iterator[None]:
    """Point default ledger and policy paths away from the working directory."""
    temp_root = Path(os.environ.get("TEMP", Path.cwd()))
    root = temp_root / "autopay_test_runs"
    root.mkdir(parents=True, exist_ok=True)
    ledger_path = root / "default_audit_log.jsonl"
    policy_path = root / "default_policy.json"
    os.environ.setdefault("AUTOPAY_LEDGER_PATH", str(ledger_path))
    os.environ.setdefault("AUTOPAY_POLICY_PATH", str(policy_path))
    try:
        yield
    finally:
        for path in (ledger_path, policy_path):
            try:
                path.unlink(missing_ok=True)
            except OSError:
                pass


@pytest.fixture
def tmp_path() -> Path:
    """Return a writable temp dir under %TEMP% without tempfile.mkdtemp ACL quirks."""
    temp_root = Path(os.environ.get("TEMP", Path.cwd()))
    root = temp_root / "autopay_test_runs"
    root.mkdir(parents=True, exist_ok=True)
    path = root / f"run_{uuid.uuid4().hex}"
    path.mkdir(parents=True, exist_ok=True)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
