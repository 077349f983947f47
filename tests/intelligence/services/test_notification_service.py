"""Tests for NotificationService."""
from datetime import datetime, timedelta

import pytest

from projects.intelligence.db.models import (
    IntelNotification,
    NotificationPriority,
    NotificationType,
)
from projects.intelligence.services.notification_service import NotificationService

NOW = datetime(2026, 5, 1, 12, 0)


def _notification(created_at, is_read=False, expires_at=None):
    return IntelNotification(
        user_id=1,
        notification_type=NotificationType.RULE_TRIGGERED,
        priority=NotificationPriority.MEDIUM,
        title="Regra disparada",
        message="cpa > 100",
        is_read=is_read,
        created_at=created_at,
        expires_at=expires_at,
    )


@pytest.mark.asyncio
async def test_cleanup_removes_expired_and_old_read(intel_repo):
    expired = _notification(NOW - timedelta(days=2), expires_at=NOW - timedelta(hours=1))
    old_read = _notification(NOW - timedelta(days=31), is_read=True)
    old_unread = _notification(NOW - timedelta(days=31))
    recent_read = _notification(NOW - timedelta(days=3), is_read=True)
    intel_repo.notifications.extend([expired, old_read, old_unread, recent_read])

    result = await NotificationService(intel_repo).cleanup(now=NOW)

    assert result == {"expired_removed": 1, "old_removed": 1}
    assert intel_repo.notifications == [old_unread, recent_read]


@pytest.mark.asyncio
async def test_score_change_priority(intel_repo):
    service = NotificationService(intel_repo)

    small = await service.score_change(1, "act_1", 70, 62, change_threshold=10)
    large = await service.score_change(1, "act_1", 70, 50, change_threshold=10)

    assert small.priority == NotificationPriority.MEDIUM
    assert small.title == "Score da conta caiu"
    assert large.priority == NotificationPriority.HIGH
    assert large.message == "O score da conta act_1 mudou de 70 para 50 (-20)"
