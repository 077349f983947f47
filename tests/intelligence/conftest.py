"""Fixtures compartilhadas dos testes do motor de inteligência."""
from contextlib import asynccontextmanager, nullcontext
from datetime import date, datetime, timedelta
from itertools import count
from types import SimpleNamespace

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import shared.db.models.intel_readonly  # noqa: F401  (registra as tabelas de leitura)
from projects.intelligence.db.models import (
    ActionStatus,
    IntelAccountScore,
    IntelAutomationAction,
    IntelAutomationRule,
    IntelLearnedPattern,
    IntelNotification,
    IntelTrainingFeedback,
)
from projects.intelligence.services.expert_prior_service import clear_expert_cache
from shared.db.session import Base


@asynccontextmanager
async def sqlite_session_maker():
    """
    Banco SQLite em memória (aiosqlite) com todas as tabelas criadas.

    O driver emite BEGIN por conta própria e quebra SAVEPOINT; os listeners
    devolvem o controle da transação ao SQLAlchemy.
    """
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield async_sessionmaker(engine, expire_on_commit=False)
    finally:
        await engine.dispose()


def _value(v):
    return getattr(v, "value", v)


class FakeIntelRepository:
    """IntelRepository em memória com a mesma interface assíncrona."""

    def __init__(self, rules=None, scores=None):
        self._ids = count(1)
        self.patterns = []
        self.rules = list(rules or [])
        self.actions = []
        self.scores = list(scores or [])
        self.notifications = []
        self.feedback = []
        self.flush_count = 0
        self.savepoint_count = 0
        self.commit_count = 0

    async def add(self, instance):
        if getattr(instance, "id", None) is None:
            instance.id = next(self._ids)
        if isinstance(instance, IntelLearnedPattern):
            self.patterns.append(instance)
        elif isinstance(instance, IntelAutomationRule):
            self.rules.append(instance)
        elif isinstance(instance, IntelAutomationAction):
            self.actions.append(instance)
        elif isinstance(instance, IntelAccountScore):
            self.scores.append(instance)
        elif isinstance(instance, IntelNotification):
            self.notifications.append(instance)
        elif isinstance(instance, IntelTrainingFeedback):
            self.feedback.append(instance)
        return instance

    async def flush(self):
        self.flush_count += 1

    def savepoint(self):
        self.savepoint_count += 1
        return nullcontext()

    async def commit(self):
        self.commit_count += 1

    # Patterns
    async def get_pattern_by_key(self, pattern_type, pattern_name, user_id=None, ad_account_id=None):
        for p in self.patterns:
            if (
                _value(p.pattern_type) == _value(pattern_type)
                and p.pattern_name == pattern_name
                and p.user_id == user_id
                and p.ad_account_id == ad_account_id
            ):
                return p
        return None

    async def get_active_patterns(self, now, user_id=None, ad_account_id=None, pattern_type=None):
        result = [
            p for p in self.patterns
            if p.is_active
            and (p.valid_until is None or p.valid_until > now)
            and (user_id is None or p.user_id in (None, user_id))
            and (ad_account_id is None or p.ad_account_id in (None, ad_account_id))
            and (pattern_type is None or _value(p.pattern_type) == _value(pattern_type))
        ]
        return sorted(result, key=lambda p: p.confidence_score, reverse=True)

    async def deactivate_stale_patterns(self, now):
        stale = [p for p in self.patterns if p.is_active and p.valid_until < now]
        for p in stale:
            p.is_active = False
        return len(stale)

    # Rules
    async def get_users_with_active_rules(self):
        return sorted({r.user_id for r in self.rules if r.is_active})

    async def get_active_rules(self, user_id, ad_account_id=None):
        return [r for r in self.rules if r.user_id == user_id and r.is_active]

    async def get_rules(self, user_id):
        return [r for r in self.rules if r.user_id == user_id]

    # Actions
    async def get_action(self, action_id, user_id=None):
        for a in self.actions:
            if a.id == action_id and (user_id is None or a.user_id == user_id):
                return a
        return None

    async def action_exists_since(self, rule_id, entity_id, since):
        return any(
            a.rule_id == rule_id and a.entity_id == entity_id and a.created_at >= since
            for a in self.actions
        )

    async def get_pending_actions(self, user_id, now, limit=50):
        return [
            a for a in self.actions
            if a.user_id == user_id
            and a.status == ActionStatus.PENDING_APPROVAL
            and (a.expires_at is None or a.expires_at > now)
        ][:limit]

    async def get_approved_actions(self, limit=10):
        return [a for a in self.actions if a.status == ActionStatus.APPROVED][:limit]

    async def get_overdue_pending_actions(self, now):
        return [
            a for a in self.actions
            if a.status == ActionStatus.PENDING_APPROVAL
            and a.expires_at is not None
            and a.expires_at < now
        ]

    async def get_actions_since(self, user_id, since):
        return [a for a in self.actions if a.user_id == user_id and a.created_at >= since]

    # Scores
    async def get_score(self, user_id, ad_account_id, score_date):
        for s in self.scores:
            if (
                s.user_id == user_id
                and s.ad_account_id == ad_account_id
                and s.score_date == score_date
            ):
                return s
        return None

    async def get_latest_scores(self, user_id):
        latest = {}
        for s in self.scores:
            if s.user_id != user_id:
                continue
            current = latest.get(s.ad_account_id)
            if current is None or s.score_date > current.score_date:
                latest[s.ad_account_id] = s
        return sorted(latest.values(), key=lambda s: s.overall_score, reverse=True)

    async def get_score_history(self, user_id, ad_account_id, since):
        history = [
            s for s in self.scores
            if s.user_id == user_id and s.ad_account_id == ad_account_id and s.score_date >= since
        ]
        return sorted(history, key=lambda s: s.score_date)

    # Notifications
    async def delete_expired_notifications(self, now):
        expired = [n for n in self.notifications if n.expires_at is not None and n.expires_at < now]
        for n in expired:
            self.notifications.remove(n)
        return len(expired)

    async def delete_old_notifications(self, before):
        old = [n for n in self.notifications if n.is_read and n.created_at < before]
        for n in old:
            self.notifications.remove(n)
        return len(old)


class FakeSnapshotRepository:
    """SnapshotRepository em memória."""

    def __init__(self, snapshots=None, pixel=None):
        self.snapshots = list(snapshots or [])
        self.pixel = pixel

    async def get_snapshots(
        self, entity_type, since, user_id=None, ad_account_id=None,
        min_spend=None, min_frequency=None,
    ):
        rows = [
            s for s in self.snapshots
            if s.snapshot_date >= since
            and (not entity_type or s.entity_type == entity_type)
            and (user_id is None or s.user_id == user_id)
            and (ad_account_id is None or s.ad_account_id == ad_account_id)
            and (min_spend is None or (s.spend or 0) > min_spend)
            and (min_frequency is None or (s.frequency or 0) > min_frequency)
        ]
        return sorted(rows, key=lambda s: (s.entity_id, s.snapshot_date, s.snapshot_hour or 0))

    async def get_recent_snapshots(self, user_id, created_since, entity_type=None, ad_account_id=None):
        rows = [
            s for s in self.snapshots
            if s.user_id == user_id
            and s.created_at >= created_since
            and (not entity_type or entity_type == "all" or s.entity_type == entity_type)
            and (not ad_account_id or s.ad_account_id == ad_account_id)
        ]
        return sorted(
            rows, key=lambda s: (s.snapshot_date, s.snapshot_hour or 0), reverse=True
        )

    async def get_account_pairs(self):
        return sorted({(s.user_id, s.ad_account_id) for s in self.snapshots})

    async def count_snapshots(self, user_id=None):
        return len([s for s in self.snapshots if user_id is None or s.user_id == user_id])

    async def get_latest_pixel_health(self, user_id, ad_account_id):
        return self.pixel


class FakeExpertRepository:
    """ExpertRuleRepository em memória."""

    def __init__(self, rules=None):
        self.rules = list(rules or [])
        self.calls = 0

    async def get_rules(self, vertical, rule_type=None):
        self.calls += 1
        return [
            r for r in self.rules
            if r.is_active
            and r.vertical in (vertical, "all")
            and (rule_type is None or r.rule_type == rule_type)
        ]

    async def count_active(self):
        return len([r for r in self.rules if r.is_active])


def make_snapshot(**overrides):
    """Snapshot de ad set com métricas razoáveis; campos sobrescrevíveis."""
    data = {
        "user_id": 1,
        "ad_account_id": "act_1",
        "entity_type": "adset",
        "entity_id": "adset_1",
        "entity_name": "Conjunto 1",
        "snapshot_date": date.today() - timedelta(days=1),
        "snapshot_hour": None,
        "spend": 50.0,
        "impressions": 1000,
        "clicks": 20,
        "reach": 800,
        "conversions": 1,
        "revenue": 50.0,
        "cpm": 50.0,
        "ctr": 2.0,
        "cpc": 2.5,
        "cpa": 50.0,
        "roas": 100.0,
        "frequency": 1.25,
        "learning_phase": "SUCCESS",
        "effective_status": "ACTIVE",
        "days_since_creation": 10,
        "hour_of_day": None,
        "day_of_week": None,
        "created_at": datetime.utcnow() - timedelta(hours=1),
    }
    data.update(overrides)
    return SimpleNamespace(**data)


def make_expert_rule(**overrides):
    data = {
        "name": "Regra",
        "vertical": "all",
        "rule_type": "kill",
        "conditions": {},
        "thresholds": {},
        "confidence_score": 0.8,
        "expert_count": 1,
        "is_active": True,
    }
    data.update(overrides)
    return SimpleNamespace(**data)


@pytest.fixture
def intel_repo():
    return FakeIntelRepository()


@pytest.fixture
def sqlite_db():
    return sqlite_session_maker


@pytest.fixture
def snapshot_factory():
    return make_snapshot


@pytest.fixture
def expert_rule_factory():
    return make_expert_rule


@pytest.fixture
def fake_snapshot_repo_cls():
    return FakeSnapshotRepository


@pytest.fixture
def fake_expert_repo_cls():
    return FakeExpertRepository


@pytest.fixture
def fake_intel_repo_cls():
    return FakeIntelRepository


@pytest.fixture(autouse=True)
def _clear_expert_cache():
    clear_expert_cache()
    yield
    clear_expert_cache()
