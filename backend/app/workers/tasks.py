import asyncio
from typing import Any, Dict
from celery import shared_task
from app.core.config import settings
from app.core.logging import get_logger
from app.db.session import build_engine, build_session_factory
from app.schemas.failure import FailureFilters
from app.services.analysis.service import FailureAnalysisService
from app.services.classification.classifier import RuleBasedClassifier
from app.services.classification.rules import load_rule_set
from app.workers.celery_app import celery_app  # noqa: F401 (sets the current app)

logger = get_logger("worker")


async def _run_with_service(operation):
    # Worker processes get their own engine, bound to this event loop
    engine = build_engine(settings.DATABASE_URL)
    try:
        service = FailureAnalysisService(
            build_session_factory(engine),
            RuleBasedClassifier(load_rule_set()),
        )
        return await operation(service)
    finally:
        await engine.dispose()


@shared_task(name="auto_classify_project")
def auto_classify_project(project_id: int, filters: Dict[str, Any], force: bool = False):
    """Batch auto-classification of one project's filtered failures."""
    logger.info(f"Starting auto-classification for project {project_id}")
    parsed = FailureFilters.model_validate(filters)
    result = asyncio.run(_run_with_service(lambda s: s.auto_classify(project_id, parsed, force=force)))
    return result.model_dump(mode="json", by_alias=True)


@shared_task(name="deduplicate_project")
def deduplicate_project(project_id: int, filters: Dict[str, Any]):
    logger.info(f"Starting deduplication for project {project_id}")
    parsed = FailureFilters.model_validate(filters)
    groups = asyncio.run(_run_with_service(lambda s: s.deduplicate(project_id, parsed)))
    return [g.model_dump(mode="json", by_alias=True) for g in groups]
