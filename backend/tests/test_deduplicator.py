from datetime import timedelta

from sqlalchemy import func, select

from app.core.timeutil import utcnow
from app.models.defect import DefectGroup, DefectGroupMember
from app.schemas.failure import FailureFilters
from app.services.analytics.stats import to_failure_record
from app.services.defects.deduplicator import DeduplicationEngine

SPEC_ERROR = "Error: expect(locator).toBeVisible() failed\n    at /work/tests/checkout.spec.ts:{}"


async def _group_state(session_factory):
    async with session_factory() as session:
        groups = (await session.execute(select(DefectGroup).order_by(DefectGroup.id))).scalars().all()
        members = (await session.execute(select(func.count()).select_from(DefectGroupMember))).scalar_one()
        return [(g.id, g.signature_hash, g.occurrence_count, g.first_seen, g.last_seen) for g in groups], members


async def test_line_number_variants_share_one_group(service, seed) -> None:
    run_a = await seed.run(started_at=utcnow() - timedelta(hours=5))
    run_b = await seed.run(started_at=utcnow() - timedelta(hours=2))
    await seed.case(run_a, "checkout shows pay button", SPEC_ERROR.format("33:21"))
    await seed.case(run_b, "checkout shows pay button", SPEC_ERROR.format("40:5"))

    groups = await service.deduplicate(1, FailureFilters())

    assert len(groups) == 1
    assert groups[0].occurrence_count == 2
    assert groups[0].first_seen < groups[0].last_seen


async def test_deduplicate_is_idempotent(service, seed, session_factory) -> None:
    run = await seed.run()
    await seed.case(run, "login", "TimeoutError: Timeout 15000ms exceeded")
    await seed.case(run, "search", "Error: ENOENT: no such file or directory, open './lead.json'")
    await seed.case(run, "profile", "TimeoutError: Timeout 30000ms exceeded")

    await service.deduplicate(1, FailureFilters())
    before = await _group_state(session_factory)
    await service.deduplicate(1, FailureFilters())
    after = await _group_state(session_factory)

    assert before == after
    groups, members = after
    assert len(groups) == 2
    assert members == 3
    assert sorted(g[2] for g in groups) == [1, 2]


async def test_groups_are_scoped_by_project_and_class(service, seed) -> None:
    error = "TimeoutError: Timeout 15000ms exceeded"
    await seed.case(await seed.run(project_id=1), "login", error)
    await seed.case(await seed.run(project_id=2), "login", error)

    first = await service.deduplicate(1, FailureFilters())
    second = await service.deduplicate(2, FailureFilters())

    assert first[0].signature_hash == second[0].signature_hash
    assert first[0].id != second[0].id


async def test_reclassified_failure_moves_to_a_group_of_its_new_class(service, seed) -> None:
    run = await seed.run()
    case = await seed.case(run, "totals", "Something odd happened")
    await service.classify_failure(await service.load_failure(case.id))
    [unknown] = await service.deduplicate(1, FailureFilters())

    await service.reclassify_failure(case.id, "ApplicationDefect", "Logic_Error", "qa.lead")
    groups = await service.deduplicate(1, FailureFilters())

    assert [g.primary_class for g in groups] == ["ApplicationDefect"]
    assert groups[0].sub_class == "Logic_Error"
    assert groups[0].id != unknown.id


async def test_upsert_counts_a_failure_once_across_sessions(session_factory, seed) -> None:
    run = await seed.run()
    case = await seed.case(run, "cart", "Error: connect ECONNREFUSED 127.0.0.1:5432")
    failure = to_failure_record(case, run)
    engine = DeduplicationEngine()

    ids = []
    for _ in range(3):
        async with session_factory() as session, session.begin():
            ids.append(await engine.upsert(session, failure, "EnvironmentIssue", "Connection_Refused"))

    assert len(set(ids)) == 1
    async with session_factory() as session:
        group = await session.get(DefectGroup, ids[0])
        assert group.occurrence_count == 1
        assert group.sub_class == "Connection_Refused"


async def test_group_without_sub_class_is_reported_as_none(service, seed) -> None:
    run = await seed.run()
    case = await seed.case(run, "totals", "Something odd happened")
    await service.classify_failure(await service.load_failure(case.id))
    await service.reclassify_failure(case.id, "ApplicationDefect", None, "qa.lead")

    [group] = await service.deduplicate(1, FailureFilters())
    assert group.sub_class is None


async def test_resolving_a_group(service, seed) -> None:
    await seed.case(await seed.run(), "login", "TimeoutError: Timeout 15000ms exceeded")
    [group] = await service.deduplicate(1, FailureFilters())

    resolved = await service.set_group_resolved(group.id, True)
    assert resolved.is_resolved is True
    assert await service.list_defect_groups(1, include_resolved=False) == []
    assert [g.id for g in await service.list_defect_groups(1)] == [group.id]
