"""Sliding-window rate limiting and its failure policy."""
from datetime import timedelta
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from services.rate_limit import RATE_LIMITS, check_rate_limit


def test_allows_until_window_is_full(db, now):
    limit = RATE_LIMITS["job_run"].max_requests
    results = [check_rate_limit(db, "admin-1", "job_run", now=now + timedelta(seconds=i)) for i in range(limit + 1)]

    assert [r.allowed for r in results] == [True] * limit + [False]
    assert results[0].remaining == limit - 1
    assert results[-1].reset_at == now + timedelta(seconds=RATE_LIMITS["job_run"].window_seconds)


def test_window_slides(db, now):
    for i in range(RATE_LIMITS["job_run"].max_requests):
        check_rate_limit(db, "admin-1", "job_run", now=now)

    later = now + timedelta(seconds=RATE_LIMITS["job_run"].window_seconds + 1)
    assert check_rate_limit(db, "admin-1", "job_run", now=later).allowed


def test_identifiers_are_independent(db, now):
    for _ in range(RATE_LIMITS["job_run"].max_requests):
        check_rate_limit(db, "admin-1", "job_run", now=now)

    assert check_rate_limit(db, "admin-2", "job_run", now=now).allowed


@pytest.fixture
def broken_db():
    session = Mock(spec=Session)
    session.execute.side_effect = OperationalError("SELECT", {}, Exception("database is down"))
    return session


@pytest.mark.parametrize("action", ["login", "settlement", "job_run"])
def test_critical_actions_fail_closed(broken_db, action):
    assert check_rate_limit(broken_db, "admin-1", action).allowed is False
    broken_db.rollback.assert_called_once()


@pytest.mark.parametrize("action", ["search", "risk_evaluate", "api", "unknown_action"])
def test_other_actions_fail_open(broken_db, action):
    assert check_rate_limit(broken_db, "admin-1", action).allowed is True


def test_job_run_endpoint_returns_429(client, admin_headers):
    for _ in range(RATE_LIMITS["job_run"].max_requests):
        assert client.post("/admin/risk/jobs/daily-eval/run", headers=admin_headers).status_code == 200

    assert client.post("/admin/risk/jobs/daily-eval/run", headers=admin_headers).status_code == 429
