"""Tests for renewal email planning — mocked Gradient calls.

Covers: recipient selection by stage, LLM draft vs template fallback,
        dedupe per (policy, stage, target), HTML wrapping, prompt content.
"""

from datetime import date
from unittest.mock import AsyncMock, patch

import pytest

from coverwatch.models import RenewalEmail
from coverwatch.schemas.renewals import EscalationEvent
from coverwatch.services.renewal_email_planner import (
    AutoEmailPlanner,
    _build_prompt,
    draft_renewal_email,
    fallback_email,
    wrap_email_html,
)

GRADIENT = "coverwatch.services.renewal_email_planner.gradient_json"


def _event(stage=30, days_left=44, vendor_email="office@summitroofing.com", broker_email="agent@midwestbrokers.com", **kw):
    return EscalationEvent(
        org_id=kw.get("org_id", 1),
        org_name="Harbor Property Group",
        vendor_id=kw.get("vendor_id", 1),
        vendor_name="Summit Roofing LLC",
        vendor_email=vendor_email,
        broker_email=broker_email,
        policy_id=kw.get("policy_id", 1),
        schedule_id=1,
        coverage="General Liability",
        stage=stage,
        days_left=days_left,
        expiration_date=date(2026, 4, 15),
        compliance_summary=kw.get("compliance_summary", ""),
    )


# ── Recipients ───────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "stage, expected",
    [
        (90, ["vendor"]),
        (30, ["vendor"]),
        (7, ["vendor", "broker"]),
        (3, ["vendor", "broker"]),
        (1, ["vendor", "broker"]),
        (0, ["vendor", "broker"]),
    ],
)
def test_broker_joins_from_stage_7(stage, expected):
    planner = AutoEmailPlanner(dedupe=True)
    assert [t for t, _ in planner.recipients(_event(stage=stage))] == expected


def test_no_addresses_no_recipients():
    planner = AutoEmailPlanner()
    assert planner.recipients(_event(stage=0, vendor_email=None, broker_email=None)) == []


def test_broker_max_stage_configurable():
    planner = AutoEmailPlanner(broker_max_stage=30)
    assert [t for t, _ in planner.recipients(_event(stage=30))] == ["vendor", "broker"]


# ── Drafting ─────────────────────────────────────────────────────────


def test_prompt_carries_stage_context():
    prompt = _build_prompt(_event(stage=7, days_left=5, compliance_summary="1 failing rule"), "broker")
    assert "Recipient: broker" in prompt
    assert "Stage: 7-Day Window" in prompt
    assert "Days Left: 5" in prompt
    assert "1 failing rule" in prompt


@pytest.mark.asyncio
async def test_draft_uses_llm_copy():
    with patch(GRADIENT, new_callable=AsyncMock) as mock:
        mock.return_value = {"subject": "Renew your GL policy", "body": "Please upload your updated COI."}
        draft = await draft_renewal_email(_event(), "vendor")

    assert draft == {"subject": "Renew your GL policy", "body": "Please upload your updated COI."}
    assert mock.await_args.kwargs["temperature"] == 0.2


@pytest.mark.asyncio
async def test_draft_falls_back_when_llm_unavailable():
    with patch(GRADIENT, new_callable=AsyncMock) as mock:
        mock.return_value = None
        draft = await draft_renewal_email(_event(stage=0, days_left=-2), "vendor")

    assert draft == fallback_email(_event(stage=0, days_left=-2), "vendor")
    assert "has expired" in draft["body"]


@pytest.mark.asyncio
async def test_draft_falls_back_on_empty_body():
    with patch(GRADIENT, new_callable=AsyncMock) as mock:
        mock.return_value = {"subject": "Hi", "body": "  "}
        draft = await draft_renewal_email(_event(), "broker")
    assert "your insured" in draft["body"]


@pytest.mark.asyncio
async def test_draft_keeps_body_without_subject():
    with patch(GRADIENT, new_callable=AsyncMock) as mock:
        mock.return_value = {"body": "Please renew."}
        draft = await draft_renewal_email(_event(), "vendor")
    assert draft["body"] == "Please renew."
    assert draft["subject"].startswith("Insurance renewal required")


def test_fallback_wording_by_days_left():
    assert "expires in 44 days" in fallback_email(_event(), "vendor")["body"]
    assert "expires tomorrow" in fallback_email(_event(stage=1, days_left=1), "vendor")["body"]


def test_wrap_email_html_escapes_and_links():
    out = wrap_email_html("Renewal <now>", "First para.\n\nSecond & last.")
    assert "Renewal &lt;now&gt;" in out
    assert out.count("<p style=\"font-size:14px") == 2
    assert "Second &amp; last." in out
    assert "/upload" in out


# ── Planning / dedupe ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_plan_queues_vendor_and_broker(db_session):
    planner = AutoEmailPlanner(dedupe=True)
    with patch(GRADIENT, new_callable=AsyncMock) as mock:
        mock.return_value = None
        ids = await planner.plan(db_session, _event(stage=7, days_left=5))
    db_session.commit()

    rows = db_session.query(RenewalEmail).order_by(RenewalEmail.id).all()
    assert [r.id for r in rows] == ids
    assert [(r.target, r.to_email) for r in rows] == [
        ("vendor", "office@summitroofing.com"),
        ("broker", "agent@midwestbrokers.com"),
    ]
    assert all(r.status == "pending" and r.attempts == 0 for r in rows)
    assert rows[0].body.startswith("<div")
    assert mock.await_count == 2


@pytest.mark.asyncio
async def test_dedupe_skips_same_stage(db_session):
    planner = AutoEmailPlanner(dedupe=True)
    with patch(GRADIENT, new_callable=AsyncMock) as mock:
        mock.return_value = None
        first = await planner.plan(db_session, _event(stage=30))
        second = await planner.plan(db_session, _event(stage=30))
        third = await planner.plan(db_session, _event(stage=7))

    assert len(first) == 1
    assert second == []
    assert len(third) == 2


@pytest.mark.asyncio
async def test_dedupe_ignores_failed_rows(db_session):
    planner = AutoEmailPlanner(dedupe=True)
    with patch(GRADIENT, new_callable=AsyncMock) as mock:
        mock.return_value = None
        [first] = await planner.plan(db_session, _event(stage=30))
        db_session.get(RenewalEmail, first).status = "failed"
        db_session.flush()
        again = await planner.plan(db_session, _event(stage=30))

    assert len(again) == 1


@pytest.mark.asyncio
async def test_dedupe_off_requeues(db_session):
    planner = AutoEmailPlanner(dedupe=False)
    with patch(GRADIENT, new_callable=AsyncMock) as mock:
        mock.return_value = None
        await planner.plan(db_session, _event(stage=30))
        await planner.plan(db_session, _event(stage=30))

    assert db_session.query(RenewalEmail).count() == 2
