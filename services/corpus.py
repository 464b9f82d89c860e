"""Corpus ingestion job, gated on non-empty source directories."""

from __future__ import annotations

from typing import Any, Mapping

from core.errors import PreconditionViolated
from core.logging import logger as LOGGER
from services.compose_runner import ComposeRunner
from storage.layout import corpus_directories, corpus_has_content


def run_corpus_setup(config: Mapping[str, Any], runner: ComposeRunner) -> None:
    """Run the one-shot corpus setup service when there is something to ingest."""

    if not corpus_has_content(config):
        directories = ", ".join(str(path) for path in corpus_directories(config))
        raise PreconditionViolated(
            f"No corpus data found. Add PDF or image documents to: {directories}"
        )

    corpus_cfg = config.get("corpus") or {}
    service = str(corpus_cfg.get("setup_service", "vrag-setup"))
    profile = str(corpus_cfg.get("setup_profile", "setup")) or None
    LOGGER.info("[Corpus] Running %s", service)
    runner.run_job(service, profile=profile)
    LOGGER.info("[Corpus] Corpus setup complete")
