# src/storage/layout.py — v1
"""Artifact store key layout.

    runs/{YYYY}/{MM}/{run_id}/             run container
    runs/{YYYY}/{MM}/{run_id}/{source}/    source container
    .../{source}/{item_id}/raw.json        per-item artifacts
    manifests/{run_id}_manifest.json       end-of-run manifest

With a caller-supplied parent container the run container becomes
``{parent_id}/{run_id}`` instead of the dated path.
"""

from __future__ import annotations

from datetime import datetime

RUNS_DIR = "runs"
MANIFESTS_DIR = "manifests"

RAW_JSON = "raw.json"
WATCH_PAGE = "watch.html"


def run_container(run_id: str, created_at: datetime, parent_id: str | None = None) -> str:
    """Return the key prefix of a run container."""
    if parent_id:
        return f"{parent_id.rstrip('/')}/{run_id}"
    return f"{RUNS_DIR}/{created_at.strftime('%Y')}/{created_at.strftime('%m')}/{run_id}"


def source_container(run_prefix: str, source: str) -> str:
    return f"{run_prefix}/{source}"


def item_artifact(container_id: str, item_id: str, name: str) -> str:
    safe_item = item_id.replace("/", "_").replace("\\", "_")
    return f"{container_id}/{safe_item}/{name}"


def manifest_path(run_id: str) -> str:
    return f"{MANIFESTS_DIR}/{run_id}_manifest.json"
