"""
Unit tests for the milestone update validator.

Checks run in a fixed order; each test pins which error wins when several
checks would fail.
"""
import pytest
from datetime import date

from pipetrak.milestones.exceptions import (
    AccessDeniedError,
    NotFoundError,
    TemporalPolicyError,
    ValidationError,
)
from pipetrak.milestones.validator import MilestoneValidator
from pipetrak.models.values import MilestoneUpdate


def make_update(component_id="c1", name="Receive", value=None, **extra):
    return MilestoneUpdate.model_validate({
        "component_id": component_id,
        "milestone_name": name,
        "value": value or {"kind": "discrete", "completed": True},
        **extra,
    })


@pytest.fixture
def validator(store, repos, clock):
    store.add_component("c1")
    store.add_component("q1", template_name="Insulation", workflow_type="MILESTONE_QUANTITY")
    return MilestoneValidator(repos.components, repos.projects, clock=clock)


class TestValidate:
    """Single update validation."""

    @pytest.mark.asyncio
    async def test_valid_update_resolves_ids(self, validator, session):
        validated = await validator.validate(session, make_update(), "foreman-1", index=3)

        assert validated.index == 3
        assert validated.milestone_id == "c1:Receive"
        assert validated.component_id == "c1"
        assert validated.project_id == "proj-1"
        assert validated.organization_id == "org-1"
        assert validated.workflow_type == "MILESTONE_DISCRETE"
        assert validated.effective_date == date(2026, 3, 11)

    @pytest.mark.asyncio
    async def test_unknown_milestone(self, validator, session):
        with pytest.raises(NotFoundError):
            await validator.validate(session, make_update(name="Galvanize"), "foreman-1")

    @pytest.mark.asyncio
    async def test_unknown_component(self, validator, session):
        with pytest.raises(NotFoundError):
            await validator.validate(session, make_update(component_id="missing"), "foreman-1")

    @pytest.mark.asyncio
    async def test_not_found_wins_over_access(self, validator, session):
        with pytest.raises(NotFoundError):
            await validator.validate(session, make_update(name="Galvanize"), "outsider-1")

    @pytest.mark.asyncio
    async def test_non_member_denied(self, validator, session):
        with pytest.raises(AccessDeniedError) as exc_info:
            await validator.validate(session, make_update(), "outsider-1")

        assert "org-1" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_access_wins_over_workflow_type(self, validator, session):
        update = make_update(value={"kind": "percentage", "value": 50})

        with pytest.raises(AccessDeniedError):
            await validator.validate(session, update, "outsider-1")

    @pytest.mark.asyncio
    async def test_wrong_value_kind(self, validator, session):
        update = make_update(value={"kind": "percentage", "value": 50})

        with pytest.raises(ValidationError) as exc_info:
            await validator.validate(session, update, "foreman-1")

        assert exc_info.value.message == "Invalid update for workflow type"

    @pytest.mark.asyncio
    async def test_quantity_on_quantity_component(self, validator, session):
        update = make_update("q1", "Insulate", value={"kind": "quantity", "value": 3, "total": 10})

        validated = await validator.validate(session, update, "foreman-1")

        assert validated.workflow_type == "MILESTONE_QUANTITY"

    @pytest.mark.asyncio
    async def test_workflow_type_wins_over_backdating(self, validator, session):
        update = make_update(value={"kind": "percentage", "value": 50}, effective_date="2026-03-20")

        with pytest.raises(ValidationError):
            await validator.validate(session, update, "foreman-1")

    @pytest.mark.asyncio
    async def test_closed_week_rejected(self, validator, session):
        with pytest.raises(TemporalPolicyError):
            await validator.validate(session, make_update(effective_date="2026-03-04"), "foreman-1")

    @pytest.mark.asyncio
    async def test_future_date_rejected(self, validator, session):
        with pytest.raises(TemporalPolicyError) as exc_info:
            await validator.validate(session, make_update(effective_date="2026-03-12"), "foreman-1")

        assert exc_info.value.details == {"effective_date": "2026-03-12"}


class TestValidateMany:
    """Batch validation collects failures instead of raising."""

    @pytest.mark.asyncio
    async def test_splits_valid_and_invalid_in_order(self, validator, session):
        updates = [
            make_update(name="Receive"),
            make_update(name="Galvanize"),
            make_update(name="Erect"),
            make_update(name="Connect", effective_date="2026-03-01"),
        ]

        report = await validator.validate_many(session, updates, "foreman-1")

        assert [v.index for v in report.valid] == [0, 2]
        assert [(f.index, f.error.code) for f in report.invalid] == [
            (1, "NOT_FOUND"),
            (3, "TEMPORAL_POLICY"),
        ]
        assert not report.all_valid

    @pytest.mark.asyncio
    async def test_membership_looked_up_once(self, validator, repos, session):
        updates = [make_update(name=name) for name in ("Receive", "Erect", "Connect")]

        report = await validator.validate_many(session, updates, "foreman-1")

        assert report.all_valid
        assert repos.projects.membership_lookups == 1

    @pytest.mark.asyncio
    async def test_lookup_failure_becomes_item_failure(self, validator, repos, session, monkeypatch):
        original = repos.components.get_milestone

        async def flaky_get_milestone(component_id, milestone_name, session=None):
            if milestone_name == "Erect":
                raise RuntimeError("connection reset")
            return await original(component_id, milestone_name, session=session)

        monkeypatch.setattr(repos.components, "get_milestone", flaky_get_milestone)

        report = await validator.validate_many(
            session, [make_update(name="Receive"), make_update(name="Erect")], "foreman-1"
        )

        assert len(report.valid) == 1
        failure = report.invalid[0]
        assert failure.error.code == "PERSISTENCE_ERROR"
        assert failure.to_dict() == {
            "index": 1,
            "component_id": "c1",
            "milestone_name": "Erect",
            "error": "connection reset",
            "code": "PERSISTENCE_ERROR",
        }
