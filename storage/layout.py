"""Persisted data layout: corpus, model cache, application data, snapshots."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping


DEFAULT_ENV_TEMPLATE = """# VRAG Environment Configuration
CUDA_VISIBLE_DEVICES=0
PYTHONPATH=/app

# Service URLs
SEARCH_URL=http://vrag-search:{search_port}/search
VLM_URL=http://vrag-vlm:{vlm_port}/v1

# Ports
SEARCH_PORT={search_port}
VLM_PORT={vlm_port}
STREAMLIT_PORT={demo_port}

# Logging
LOG_LEVEL={log_level}
"""


def data_directories(config: Mapping[str, Any]) -> dict[str, Path]:
    """Return snapshot-able data directories keyed by name."""

    directories = (config.get("snapshots") or {}).get("directories") or {}
    return {str(key): Path(str(path)).expanduser() for key, path in directories.items()}


def corpus_directories(config: Mapping[str, Any]) -> list[Path]:
    corpus_cfg = config.get("corpus") or {}
    return [
        Path(str(corpus_cfg.get("pdf_dir", "search_engine/corpus/pdf"))).expanduser(),
        Path(str(corpus_cfg.get("img_dir", "search_engine/corpus/img"))).expanduser(),
    ]


def corpus_has_content(config: Mapping[str, Any]) -> bool:
    """True when any corpus source directory holds at least one entry."""

    for directory in corpus_directories(config):
        if directory.is_dir() and any(directory.iterdir()):
            return True
    return False


def ensure_layout(config: Mapping[str, Any]) -> list[Path]:
    """Create the persisted directory layout and return the paths created."""

    wanted = corpus_directories(config) + list(data_directories(config).values())
    wanted.append(Path(str((config.get("snapshots") or {}).get("store_dir", "./backups/"))).expanduser())
    created = []
    for directory in wanted:
        if not directory.is_dir():
            directory.mkdir(parents=True, exist_ok=True)
            created.append(directory)
    return created


def write_default_env(path: Path, config: Mapping[str, Any]) -> bool:
    """Write a default ``.env`` unless one already exists."""

    if path.exists():
        return False
    ports = {
        entry.get("name"): entry.get("port")
        for entry in config.get("services") or []
        if isinstance(entry, Mapping)
    }
    path.write_text(
        DEFAULT_ENV_TEMPLATE.format(
            search_port=ports.get("vrag-search") or 8002,
            vlm_port=ports.get("vrag-vlm") or 8001,
            demo_port=ports.get("vrag-demo") or 8501,
            log_level=config.get("logging_level", "INFO"),
        ),
        encoding="utf-8",
    )
    return True
