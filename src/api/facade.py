# src/api/facade.py — v1
"""Public API facade: wire an orchestrator from settings and expose the
control surface.

Usage:
    from pulsecollect.api.facade import build_orchestrator
    orchestrator = build_orchestrator()
    result = await orchestrator.start_run("Collect 5 tweets about AI")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pulsecollect.checkpoint.checkpoint_factory import create_checkpoint_store
from pulsecollect.collectors.registry import build_collectors, snapshot_availability
from pulsecollect.config.settings import KNOWN_SOURCES, SOURCE_SETUP_HINTS, Settings, load_settings
from pulsecollect.orchestrator.workflow import WorkflowOrchestrator
from pulsecollect.planning.base_planner import BasePlanner
from pulsecollect.scheduling.recording_scheduler import RecordingScheduler
from pulsecollect.sinks.csv_sink import CsvOutputSink
from pulsecollect.storage.artifact_factory import create_artifact_store
from pulsecollect.version import __version__

if TYPE_CHECKING:
    from pulsecollect.checkpoint.base_checkpoint_store import BaseCheckpointStore
    from pulsecollect.collectors.base_collector import BaseStageCollector
    from pulsecollect.scheduling.base_scheduler import BaseContinuationScheduler
    from pulsecollect.sinks.base_sink import BaseOutputSink
    from pulsecollect.storage.base_artifact_store import BaseArtifactStore

logger = logging.getLogger(__name__)


def build_planner(settings: Settings) -> BasePlanner:
    """LLM planner, or the heuristic planner in mock mode."""
    from pulsecollect.planning.fallback import FallbackPlanner

    if settings.use_mocks:
        return FallbackPlanner(settings.max_posts_per_platform_default)

    from pulsecollect.llm.client_factory import create_llm_client
    from pulsecollect.planning.llm_planner import LLMPlanner

    client = create_llm_client(settings.llm_provider, settings.llm_model, settings=settings)
    return LLMPlanner(
        client,
        default_count=settings.max_posts_per_platform_default,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
    )


def build_orchestrator(
    settings: Settings | None = None,
    scheduler: BaseContinuationScheduler | None = None,
    store: BaseCheckpointStore | None = None,
    planner: BasePlanner | None = None,
    collectors: dict[str, BaseStageCollector] | None = None,
    sink: BaseOutputSink | None = None,
    artifact_store: BaseArtifactStore | None = None,
) -> WorkflowOrchestrator:
    """Assemble a WorkflowOrchestrator; any collaborator can be injected.

    Args:
        settings: Global settings. Loaded from .env if None.
        scheduler: Continuation backend. Defaults to a RecordingScheduler,
            i.e. an external timer re-invokes ``continue``.
    """
    settings = settings or load_settings()
    return WorkflowOrchestrator(
        settings=settings,
        store=store or create_checkpoint_store(settings),
        planner=planner or build_planner(settings),
        collectors=collectors if collectors is not None else build_collectors(settings),
        sink=sink or CsvOutputSink(settings.sink_root),
        artifact_store=artifact_store or create_artifact_store(settings),
        scheduler=scheduler or RecordingScheduler(),
    )


def config_status(settings: Settings | None = None) -> dict[str, Any]:
    """Per-source configuration snapshot with setup hints for gaps."""
    settings = settings or load_settings()
    configured = settings.source_configuration()
    sources: dict[str, Any] = {}
    for source in KNOWN_SOURCES:
        entry: dict[str, Any] = {
            "configured": configured.get(source, False),
            "enabled": source in settings.source_order_list,
        }
        if not entry["configured"]:
            entry["hint"] = SOURCE_SETUP_HINTS[source]
        sources[source] = entry
    return {
        "mock_mode": settings.use_mocks,
        "planner": settings.llm_provider,
        "missing_keys": settings.missing_required_keys(),
        "checkpoint_backend": settings.checkpoint_backend,
        "artifact_backend": settings.artifact_backend,
        "sources": sources,
    }


async def health_check(settings: Settings | None = None) -> dict[str, Any]:
    """Check configuration and that the checkpoint backend answers.

    Returns:
        Dict with ``healthy`` plus per-component details.
    """
    settings = settings or load_settings()
    status = config_status(settings)

    collectors = build_collectors(settings)
    availability = snapshot_availability(
        collectors, configured=settings.source_configuration(), mock_mode=settings.use_mocks
    )
    for collector in collectors.values():
        await collector.aclose()

    checkpoint_ok = True
    checkpoint_error: str | None = None
    store = create_checkpoint_store(settings)
    try:
        await store.list_run_ids()
    except Exception as e:
        logger.warning("Checkpoint backend check failed: %s", e)
        checkpoint_ok = False
        checkpoint_error = str(e)
    finally:
        store.close()

    healthy = checkpoint_ok and availability.any_usable and not status["missing_keys"]
    return {
        "healthy": healthy,
        "version": __version__,
        "usable_sources": [s for s, ok in availability.usable.items() if ok],
        "checkpoint": {"ok": checkpoint_ok, "error": checkpoint_error},
        "config": status,
    }
