from typing import Any
from fastapi import APIRouter, Depends, Query
from app.api.deps import get_analysis_service, get_failure_filters
from app.core.logging import get_logger
from app.schemas.failure import FailureFilters, ReclassifyRequest, ResolveGroupRequest
from app.services.analysis.service import FailureAnalysisService
from app.workers.tasks import auto_classify_project, deduplicate_project

logger = get_logger("api.failure_analysis")

router = APIRouter()


def ok(data: Any) -> dict:
    return {"success": True, "data": data}


def enqueue(task, project_id: int, filters: FailureFilters, **kwargs) -> dict:
    result = task.delay(project_id, filters.model_dump(mode="json"), **kwargs)
    logger.info(f"Queued {task.name} for project {project_id} as {result.id}")
    return ok({"taskId": result.id, "status": "queued"})


@router.get("/projects/{project_id}/summary")
async def get_summary(
    project_id: int,
    filters: FailureFilters = Depends(get_failure_filters),
    service: FailureAnalysisService = Depends(get_analysis_service),
):
    return ok(await service.get_summary(project_id, filters))


@router.get("/projects/{project_id}/test-cases")
async def get_test_case_failures(
    project_id: int,
    filters: FailureFilters = Depends(get_failure_filters),
    service: FailureAnalysisService = Depends(get_analysis_service),
):
    return ok(await service.get_test_case_failures(project_id, filters))


@router.get("/projects/{project_id}/suite-runs")
async def get_suite_run_failures(
    project_id: int,
    filters: FailureFilters = Depends(get_failure_filters),
    service: FailureAnalysisService = Depends(get_analysis_service),
):
    return ok(await service.get_suite_run_failures(project_id, filters))


@router.get("/projects/{project_id}/groups")
async def list_defect_groups(
    project_id: int,
    include_resolved: bool = Query(True, alias="includeResolved"),
    service: FailureAnalysisService = Depends(get_analysis_service),
):
    return ok(await service.list_defect_groups(project_id, include_resolved=include_resolved))


@router.post("/projects/{project_id}/auto-classify")
async def auto_classify(
    project_id: int,
    force: bool = False,
    background: bool = False,
    filters: FailureFilters = Depends(get_failure_filters),
    service: FailureAnalysisService = Depends(get_analysis_service),
):
    if background:
        return enqueue(auto_classify_project, project_id, filters, force=force)
    return ok(await service.auto_classify(project_id, filters, force=force))


@router.post("/projects/{project_id}/deduplicate")
async def deduplicate(
    project_id: int,
    background: bool = False,
    filters: FailureFilters = Depends(get_failure_filters),
    service: FailureAnalysisService = Depends(get_analysis_service),
):
    if background:
        return enqueue(deduplicate_project, project_id, filters)
    return ok(await service.deduplicate(project_id, filters))


@router.post("/test-cases/{test_case_id}/classify")
async def classify_test_case(
    test_case_id: int,
    force: bool = False,
    service: FailureAnalysisService = Depends(get_analysis_service),
):
    failure = await service.load_failure(test_case_id)
    return ok(await service.classify_failure(failure, force=force))


@router.post("/test-cases/{test_case_id}/reclassify")
async def reclassify_test_case(
    test_case_id: int,
    body: ReclassifyRequest,
    service: FailureAnalysisService = Depends(get_analysis_service),
):
    classification = await service.reclassify_failure(
        test_case_id,
        body.primary_class,
        body.sub_class,
        body.changed_by,
        expected_version=body.expected_version,
        notes=body.notes,
    )
    return ok(classification)


@router.get("/test-cases/{test_case_id}/evidence")
async def get_evidence(test_case_id: int, service: FailureAnalysisService = Depends(get_analysis_service)):
    return ok(await service.get_evidence(test_case_id))


@router.get("/test-cases/{test_case_id}/suggested-fixes")
async def get_suggested_fixes(test_case_id: int, service: FailureAnalysisService = Depends(get_analysis_service)):
    return ok(await service.get_suggested_fixes(test_case_id))


@router.get("/test-cases/{test_case_id}/history")
async def get_classification_history(test_case_id: int, service: FailureAnalysisService = Depends(get_analysis_service)):
    return ok(await service.get_classification_history(test_case_id))


@router.post("/groups/{group_id}/resolve")
async def resolve_group(
    group_id: int,
    body: ResolveGroupRequest,
    service: FailureAnalysisService = Depends(get_analysis_service),
):
    return ok(await service.set_group_resolved(group_id, body.resolved))


@router.post("/groups/{group_id}/deep-analyze")
async def deep_analyze_group(group_id: int, service: FailureAnalysisService = Depends(get_analysis_service)):
    return ok(await service.deep_analyze(group_id))
