"""
Unit tests for conflict resolution strategies.
"""
import pytest
from datetime import date, datetime

from pipetrak.milestones.calculator import CompletionCalculator
from pipetrak.milestones.exceptions import AccessDeniedError, NotFoundError, ValidationError
from pipetrak.milestones.weld_sync import WeldSynchronizer
from pipetrak.operations.conflicts import ConflictResolver
from pipetrak.utils.audit_logger import AuditLogWriter

NOW = datetime(2026, 3, 11, 10, 0)


@pytest.fixture
def resolver(store, repos, clock):
    store.add_component("c1")
    audit_writer = AuditLogWriter(repos.audit)
    return ConflictResolver(
        component_repo=repos.components,
        project_repo=repos.projects,
        calculator=CompletionCalculator(repos.components),
        synchronizer=WeldSynchronizer(repos.components, repos.welds, audit_writer),
        audit_writer=audit_writer,
        clock=clock,
    )


class TestResolveChecks:

    @pytest.mark.asyncio
    async def test_unknown_strategy(self, resolver, session):
        with pytest.raises(ValidationError) as exc_info:
            await resolver.resolve(session, "missing", "merge", "foreman-1")

        assert "merge" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unknown_milestone(self, resolver, session):
        with pytest.raises(NotFoundError):
            await resolver.resolve(session, "c1:Galvanize", "accept_server", "foreman-1")

    @pytest.mark.asyncio
    async def test_non_member(self, resolver, session):
        with pytest.raises(AccessDeniedError):
            await resolver.resolve(session, "c1:Receive", "accept_server", "outsider-1")

    @pytest.mark.asyncio
    async def test_accept_client_requires_values(self, resolver, session):
        with pytest.raises(ValidationError):
            await resolver.resolve(session, "c1:Receive", "accept_client", "foreman-1")


class TestStrategies:
    """Each strategy's effect on the milestone and its audit trail."""

    @pytest.mark.asyncio
    async def test_accept_server_keeps_values(self, resolver, store, repos, session):
        resolution = await resolver.resolve(session, "c1:Receive", "accept_server", "foreman-1")

        assert resolution.changes == {}
        assert store.milestone("c1", "Receive").is_completed is False
        entry = repos.audit.entries("CONFLICT_RESOLUTION")[0]
        assert entry.reason == "Conflict resolved with accept_server"

    @pytest.mark.asyncio
    async def test_accept_server_skips_recalculation(self, resolver, store, session):
        component = store.components["c1"]
        component.completion_percent = 42.0
        component.status = "IN_PROGRESS"

        resolution = await resolver.resolve(session, "c1:Receive", "accept_server", "foreman-1")

        assert component.completion_percent == 42.0
        assert resolution.to_dict()["component"] == {"completion_percent": 42.0, "status": "IN_PROGRESS"}

    @pytest.mark.asyncio
    async def test_accept_client_applies_completion(self, resolver, store, repos, session):
        resolution = await resolver.resolve(
            session,
            "c1:Receive",
            "accept_client",
            "foreman-1",
            client_values={"is_completed": True, "effective_date": date(2026, 3, 10)},
        )

        milestone = store.milestone("c1", "Receive")
        assert milestone.is_completed is True
        assert milestone.completed_by == "foreman-1"
        assert milestone.completed_at == NOW
        assert milestone.effective_date == date(2026, 3, 10)
        assert resolution.completion.completion_percent == 5.0
        assert store.components["c1"].status == "IN_PROGRESS"
        assert resolution.to_dict()["changes"]["is_completed"] == {"old": False, "new": True}

    @pytest.mark.asyncio
    async def test_custom_values_written(self, resolver, store, session):
        await resolver.resolve(
            session,
            "c1:Erect",
            "custom",
            "admin-1",
            custom_values={"is_completed": True, "completed_by": "foreman-2"},
        )

        milestone = store.milestone("c1", "Erect")
        assert milestone.completed_by == "foreman-2"
        assert milestone.completed_at == NOW
        assert store.components["c1"].completion_percent == 30.0

    @pytest.mark.asyncio
    async def test_custom_uncompletion_clears_metadata(self, resolver, store, session):
        milestone = store.milestone("c1", "Erect")
        milestone.is_completed = True
        milestone.completed_at = NOW
        milestone.completed_by = "foreman-2"

        await resolver.resolve(session, "c1:Erect", "custom", "foreman-1", custom_values={"is_completed": False})

        assert milestone.completed_at is None
        assert milestone.completed_by is None

    @pytest.mark.asyncio
    async def test_custom_rejects_unknown_fields(self, resolver, session):
        with pytest.raises(ValidationError) as exc_info:
            await resolver.resolve(
                session, "c1:Erect", "custom", "foreman-1", custom_values={"milestone_name": "Erect 2"}
            )

        assert "milestone_name" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_weld_milestone_flip_syncs_field_weld(self, resolver, store, session):
        store.add_component("fw1", template_name="Field Weld", weld_id="W-001", component_type="FIELD_WELD")
        weld = store.add_weld("W-001")

        await resolver.resolve(
            session,
            "fw1:Weld Made",
            "accept_client",
            "foreman-1",
            client_values={"is_completed": True, "effective_date": date(2026, 3, 9)},
        )

        assert weld.date_welded == date(2026, 3, 9)
