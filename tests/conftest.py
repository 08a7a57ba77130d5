"""
Shared fixtures for the Client Revenue Dashboard test suite.

Provides sample source rows and reusable mock objects so that all tests run
WITHOUT the table-query webhook.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest


# ---------------------------------------------------------------------------
# HTTP mock fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_aiohttp_response():
    """Create a mock aiohttp response factory."""

    def _make(status=200, text="", headers=None, body=None):
        resp = MagicMock()
        resp.status = status
        resp.read = AsyncMock(return_value=text.encode("utf-8") if body is None else body)
        resp.headers = headers or {"Content-Type": "application/json"}
        return resp

    return _make


@pytest.fixture
def make_mock_session():
    """Create a mock aiohttp session whose .post() is an async context manager.

    The gateway uses ``async with session.post(url, json=...) as resp`` so
    ``session.post`` must return an object with ``__aenter__``/``__aexit__``.
    """

    def _make(response_mock=None, error=None):
        session = MagicMock()
        if error is not None:
            session.post = MagicMock(side_effect=error)
        else:
            ctx = AsyncMock()
            ctx.__aenter__ = AsyncMock(return_value=response_mock)
            ctx.__aexit__ = AsyncMock(return_value=False)
            session.post = MagicMock(return_value=ctx)
        session.close = AsyncMock()
        session.closed = False
        return session

    return _make


# ---------------------------------------------------------------------------
# Source row fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_users():
    return [
        {"id": 7, "first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com"},
        {"id": 9, "first_name": "Alan", "last_name": "Turing", "email": "alan@example.com"},
    ]


@pytest.fixture
def sample_packages():
    return [
        {"user_id": 7, "frequency": "Weekly", "cost": "70", "name": "Support Plan"},
        {"user_id": 7, "frequency": "Weekly", "cost": None, "name": "Legacy Add-on"},
    ]


@pytest.fixture
def sample_email_week():
    return {
        "user_id": 7,
        "Monday": {"emails": 120, "email_threshold": 100, "email_cost_overage": 0.5},
        "Tuesday": {"emails": 80, "email_threshold": 100, "email_cost_overage": 0.5},
        "Week_Cost": 10,
    }


@pytest.fixture
def sample_chat_week():
    return {
        "user_id": 7,
        "Sunday": {"daily_cost": 3.0, "chats": 99, "chat_per_conversation_cost": 1},
        "Friday": {"chats": 4, "chat_per_conversation_cost": 2.5},
        "Week_Cost": 13,
    }


@pytest.fixture
def sample_call_week():
    return {
        "user_id": 7,
        "Thursday": {"cost": 6.0, "daily_cost": 100},
        "Saturday": {"daily_cost": 4.0},
        "Week_Cost": 10,
    }


@pytest.fixture
def sample_invoices():
    # 2026-01-07 is a Wednesday
    return [{"user_id": 7, "paymentamount": "140", "dateended": "2026-01-07"}]


@pytest.fixture
def sample_sources(sample_packages, sample_email_week, sample_chat_week,
                   sample_call_week, sample_invoices):
    """Rows keyed by table name, as the webhook would return them."""
    return {
        "manual_charges": sample_packages,
        "Daily_Email_Cost_Record": [sample_email_week],
        "Daily_Chat_Record_Cost_Record": [sample_chat_week],
        "Daily_Calls_Cost_Record": [sample_call_week],
        "Invoices_Pending": sample_invoices,
    }
