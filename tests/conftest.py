"""
Pytest configuration and shared fixtures.

Engine tests run against an in-memory store. FakeDatabase sessions and
savepoints snapshot the store and restore it when the block raises, so
rollback behaves like the real chunk/savepoint transactions.
"""

import os

# Must be set before pipetrak/config are imported
os.environ.setdefault("ENVIRONMENT", "test")
os.environ["REDIS_URL"] = ""
os.environ["DATABASE_URL"] = ""
os.environ["NOTIFICATION_WEBHOOK_URL"] = ""

from contextlib import asynccontextmanager
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from pipetrak.database.exceptions import DatabaseConstraintError, DatabaseOperationError
from pipetrak.database.repositories.components import MILESTONE_VALUE_FIELDS
from pipetrak.database.repositories.field_welds import WELD_SYNC_FIELDS
from pipetrak.milestones.templates import DEFAULT_TEMPLATES, FULL_MILESTONE_SET

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)

# Wednesday; the previous reporting week closed Tuesday 2026-03-10 09:00
FIXED_NOW = datetime(2026, 3, 11, 10, 0)

ORG_ID = "org-1"
PROJECT_ID = "proj-1"
FOREMAN = "foreman-1"
OTHER_FOREMAN = "foreman-2"
ADMIN = "admin-1"
OUTSIDER = "outsider-1"

# Loaded relationships are attached on read and never snapshotted
RELATIONS = {"component", "project", "template", "milestones"}


# ============================================================================
# In-memory store
# ============================================================================

class FakeStore:
    """Rows as SimpleNamespace objects keyed by primary key."""

    TABLES = ("components", "milestones", "welds", "transactions", "audit")

    def __init__(self):
        self.projects = {}
        self.members = {}
        self.templates = {}
        self.components = {}
        self.milestones = {}
        self.welds = {}
        self.transactions = {}
        self.audit = {}
        self.next_audit_id = 1

    def snapshot(self):
        return {
            table: {
                key: {k: v for k, v in vars(row).items() if k not in RELATIONS}
                for key, row in getattr(self, table).items()
            }
            for table in self.TABLES
        }

    def restore(self, snapshot):
        """Put rows back in place; objects already handed out see the old values."""
        for table, rows in snapshot.items():
            current = getattr(self, table)
            for key in list(current):
                if key not in rows:
                    del current[key]
            for key, values in rows.items():
                row = current.get(key)
                if row is None:
                    current[key] = SimpleNamespace(**values)
                else:
                    for attr, value in values.items():
                        setattr(row, attr, value)

    # ==================== SEEDING ====================

    def seed(self):
        self.projects[PROJECT_ID] = SimpleNamespace(
            id=PROJECT_ID, organization_id=ORG_ID, job_name="Unit 200 Revamp"
        )
        self.projects["proj-2"] = SimpleNamespace(
            id="proj-2", organization_id="org-2", job_name="Tank Farm"
        )
        for user_id, role in ((FOREMAN, "member"), (OTHER_FOREMAN, "member"), (ADMIN, "admin")):
            self.members[(ORG_ID, user_id)] = SimpleNamespace(
                organization_id=ORG_ID, user_id=user_id, role=role
            )
        for name, template in DEFAULT_TEMPLATES.items():
            self.templates[name] = SimpleNamespace(
                id=name, project_id=None, name=name, milestones=template["milestones"]
            )
        return self

    def add_component(
        self,
        component_id,
        template_name=FULL_MILESTONE_SET,
        workflow_type="MILESTONE_DISCRETE",
        weld_id=None,
        quantity_totals=None,
        project_id=PROJECT_ID,
        component_type="SPOOL",
    ):
        component = SimpleNamespace(
            id=component_id,
            project_id=project_id,
            drawing_id=None,
            component_id=f"TAG-{component_id}",
            type=component_type,
            workflow_type=workflow_type,
            milestone_template_id=template_name,
            completion_percent=0.0,
            status="NOT_STARTED",
            weld_id=weld_id,
        )
        self.components[component_id] = component
        for entry in self.templates[template_name].milestones:
            milestone_id = f"{component_id}:{entry['name']}"
            self.milestones[milestone_id] = SimpleNamespace(
                id=milestone_id,
                component_id=component_id,
                milestone_name=entry["name"],
                milestone_order=entry["order"],
                is_completed=False,
                percentage_complete=None,
                quantity_complete=None,
                quantity_total=(quantity_totals or {}).get(entry["name"]),
                completed_at=None,
                completed_by=None,
                effective_date=None,
            )
        return component

    def add_weld(self, weld_id_number, project_id=PROJECT_ID, **fields):
        weld = SimpleNamespace(
            id=f"weld-{weld_id_number}",
            project_id=project_id,
            weld_id_number=weld_id_number,
            welder_id=fields.get("welder_id"),
            date_welded=fields.get("date_welded"),
            comments=fields.get("comments"),
        )
        self.welds[weld.id] = weld
        return weld

    def milestone(self, component_id, name):
        return self.milestones[f"{component_id}:{name}"]


class FakeSession:
    def __init__(self, store):
        self.store = store

    @asynccontextmanager
    async def begin_nested(self):
        snapshot = self.store.snapshot()
        try:
            yield self
        except Exception:
            self.store.restore(snapshot)
            raise


class FakeDatabase:
    """Stands in for Database: one snapshot per session, restored on error."""

    def __init__(self, store):
        self.store = store
        self.sessions_opened = 0

    @asynccontextmanager
    async def session(self):
        self.sessions_opened += 1
        snapshot = self.store.snapshot()
        try:
            yield FakeSession(self.store)
        except Exception:
            self.store.restore(snapshot)
            raise


# ============================================================================
# Repositories
# ============================================================================

class FakeComponentRepository:
    def __init__(self, store):
        self.store = store
        self.fail_milestones = set()
        self.fail_completion = set()

    def _load_component(self, component):
        component.project = self.store.projects.get(component.project_id)
        component.template = self.store.templates.get(component.milestone_template_id)
        component.milestones = sorted(
            (m for m in self.store.milestones.values() if m.component_id == component.id),
            key=lambda m: m.milestone_order,
        )
        return component

    def _load_milestone(self, milestone):
        component = self.store.components[milestone.component_id]
        component.project = self.store.projects.get(component.project_id)
        milestone.component = component
        return milestone

    async def get(self, component_id, session=None):
        component = self.store.components.get(component_id)
        return self._load_component(component) if component else None

    async def update_completion(self, component, completion_percent, status, session=None):
        if component.id in self.fail_completion:
            raise DatabaseOperationError(f"Failed to update component completion: {component.id}")
        component.completion_percent = completion_percent
        component.status = status
        return component

    async def get_milestone(self, component_id, milestone_name, session=None):
        milestone = self.store.milestones.get(f"{component_id}:{milestone_name}")
        return self._load_milestone(milestone) if milestone else None

    async def get_milestone_by_id(self, milestone_id, session=None):
        milestone = self.store.milestones.get(milestone_id)
        return self._load_milestone(milestone) if milestone else None

    async def update_milestone(self, milestone, values, session=None):
        unknown = set(values) - set(MILESTONE_VALUE_FIELDS)
        if unknown:
            raise DatabaseOperationError(f"Cannot write milestone fields: {sorted(unknown)}")
        for field, value in values.items():
            setattr(milestone, field, value)
        if milestone.id in self.fail_milestones:
            raise DatabaseOperationError(f"Failed to update milestone: {milestone.id}")
        return milestone

    async def get_project_milestone_stats(self, project_id, session=None):
        stats = {}
        for milestone in self.store.milestones.values():
            if self.store.components[milestone.component_id].project_id != project_id:
                continue
            entry = stats.setdefault(
                milestone.milestone_name,
                {"milestone_name": milestone.milestone_name, "total": 0, "completed": 0},
            )
            entry["total"] += 1
            entry["completed"] += 1 if milestone.is_completed else 0
        for entry in stats.values():
            entry["completion_rate"] = round(entry["completed"] * 100 / entry["total"], 2)
        return list(stats.values())

    async def get_status_counts(self, project_id, session=None):
        counts = {}
        for component in self.store.components.values():
            if component.project_id == project_id:
                counts[component.status] = counts.get(component.status, 0) + 1
        return counts


class FakeProjectRepository:
    def __init__(self, store):
        self.store = store
        self.membership_lookups = 0

    async def get(self, project_id, session=None):
        return self.store.projects.get(project_id)

    async def get_membership(self, organization_id, user_id, session=None):
        self.membership_lookups += 1
        return self.store.members.get((organization_id, user_id))


class FakeFieldWeldRepository:
    def __init__(self, store):
        self.store = store

    async def get(self, weld_id, session=None):
        return self.store.welds.get(weld_id)

    async def get_by_weld_number(self, project_id, weld_id_number, session=None):
        for weld in self.store.welds.values():
            if weld.project_id == project_id and weld.weld_id_number == weld_id_number:
                return weld
        return None

    async def update(self, weld, values, session=None):
        unknown = set(values) - set(WELD_SYNC_FIELDS)
        if unknown:
            raise DatabaseOperationError(f"Cannot write field weld fields: {sorted(unknown)}")
        for field, value in values.items():
            setattr(weld, field, value)
        return weld


class FakeAuditRepository:
    def __init__(self, store):
        self.store = store
        self.fail = False

    async def log(
        self,
        user_id,
        entity_type,
        entity_id,
        action,
        changes,
        project_id=None,
        transaction_id=None,
        reason=None,
        session=None,
    ):
        if self.fail:
            raise DatabaseOperationError("Failed to write audit log")
        entry = SimpleNamespace(
            id=self.store.next_audit_id,
            project_id=project_id,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            changes=changes,
            transaction_id=transaction_id,
            reason=reason,
            timestamp=FIXED_NOW,
        )
        self.store.next_audit_id += 1
        self.store.audit[entry.id] = entry
        return entry

    async def get_by_transaction(self, transaction_id, actions=None, session=None):
        entries = [
            e for e in self.store.audit.values()
            if e.transaction_id == transaction_id and (not actions or e.action in actions)
        ]
        return sorted(entries, key=lambda e: e.id, reverse=True)

    async def get_recent(self, project_id, entity_type=None, limit=20, offset=0, session=None):
        entries = sorted(
            (
                e for e in self.store.audit.values()
                if e.project_id == project_id and (not entity_type or e.entity_type == entity_type)
            ),
            key=lambda e: e.id,
            reverse=True,
        )
        return entries[offset:offset + limit], len(entries)

    def entries(self, action=None):
        return [e for e in self.store.audit.values() if action is None or e.action == action]


class FakeTransactionRepository:
    def __init__(self, store):
        self.store = store

    async def create(self, transaction_id, user_id, operation_count, project_id=None, metadata=None, session=None):
        if transaction_id in self.store.transactions:
            raise DatabaseConstraintError(f"Transaction {transaction_id} already exists")
        transaction = SimpleNamespace(
            id=transaction_id,
            project_id=project_id,
            user_id=user_id,
            operation_type="bulk_milestone_update",
            operation_count=operation_count,
            success_count=0,
            failure_count=0,
            status="in_progress",
            extra_metadata=metadata or {},
            errors=[],
            started_at=FIXED_NOW,
            completed_at=None,
            rolled_back_at=None,
            rolled_back_by=None,
        )
        self.store.transactions[transaction_id] = transaction
        return transaction

    async def get(self, transaction_id, session=None):
        return self.store.transactions.get(transaction_id)

    async def finalize(
        self,
        transaction_id,
        status,
        success_count,
        failure_count,
        errors=None,
        metadata=None,
        session=None,
    ):
        transaction = self.store.transactions.get(transaction_id)
        if transaction is None:
            return None
        transaction.status = status
        transaction.success_count = success_count
        transaction.failure_count = failure_count
        transaction.errors = list(errors or [])
        transaction.extra_metadata = {**transaction.extra_metadata, **(metadata or {})}
        transaction.completed_at = FIXED_NOW
        return transaction

    async def mark_rolled_back(self, transaction, rolled_back_by, session=None):
        transaction.status = "rolled_back"
        transaction.rolled_back_at = FIXED_NOW
        transaction.rolled_back_by = rolled_back_by
        return transaction

    async def list_for_user(self, user_id, limit=10, session=None):
        return [t for t in self.store.transactions.values() if t.user_id == user_id][:limit]


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def store():
    """Seeded store: one project in org-1, default templates, three members."""
    return FakeStore().seed()


@pytest.fixture
def fake_db(store):
    return FakeDatabase(store)


@pytest.fixture
def session(store):
    return FakeSession(store)


@pytest.fixture
def repos(store):
    return SimpleNamespace(
        components=FakeComponentRepository(store),
        projects=FakeProjectRepository(store),
        welds=FakeFieldWeldRepository(store),
        audit=FakeAuditRepository(store),
        transactions=FakeTransactionRepository(store),
    )


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def notifier():
    """Notifier with every event mocked."""
    mock = MagicMock()
    mock.milestone_updated = AsyncMock()
    mock.bulk_completed = AsyncMock()
    mock.conflict_resolved = AsyncMock()
    mock.transaction_undone = AsyncMock()
    return mock


@pytest.fixture
def service(fake_db, repos, notifier, clock):
    """MilestoneService wired to the in-memory store."""
    from pipetrak.services.milestone_service import MilestoneService

    return MilestoneService(
        db=fake_db,
        component_repo=repos.components,
        project_repo=repos.projects,
        transaction_repo=repos.transactions,
        audit_repo=repos.audit,
        field_weld_repo=repos.welds,
        notifier=notifier,
        clock=clock,
    )
