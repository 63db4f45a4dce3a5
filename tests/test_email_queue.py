"""Tests for the renewal email queue sender — injected sender, mocked HTTP."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from coverwatch.models import RenewalEmail
from coverwatch.services.email_queue import RESEND_URL, process_renewal_email_queue, send_email


def _queue(db, n=1, to="office@summitroofing.com", **kw):
    rows = []
    for i in range(n):
        row = RenewalEmail(
            org_id=1, vendor_id=1, policy_id=1, stage=30, target="vendor",
            to_email=to, subject=f"Renewal {i}", body="<p>hi</p>", **kw,
        )
        db.add(row)
        rows.append(row)
    db.commit()
    return rows


@pytest.mark.asyncio
async def test_sends_pending_rows(db_session):
    rows = _queue(db_session, 2)
    sender = AsyncMock(return_value="msg_1")

    results = await process_renewal_email_queue(db_session, sender=sender)

    assert [r["status"] for r in results] == ["sent", "sent"]
    assert sender.await_count == 2
    sender.assert_any_await("office@summitroofing.com", "Renewal 0", "<p>hi</p>")
    for row in rows:
        db_session.refresh(row)
        assert row.status == "sent"
        assert row.attempts == 1
        assert row.sent_at is not None


@pytest.mark.asyncio
async def test_sent_rows_not_resent(db_session):
    _queue(db_session, 1)
    sender = AsyncMock(return_value="msg_1")
    await process_renewal_email_queue(db_session, sender=sender)
    again = await process_renewal_email_queue(db_session, sender=sender)

    assert again == []
    assert sender.await_count == 1


@pytest.mark.asyncio
async def test_failure_keeps_row_pending_until_max_attempts(db_session):
    [row] = _queue(db_session, 1)
    sender = AsyncMock(side_effect=RuntimeError("mailbox unavailable"))

    with patch("coverwatch.services.email_queue.settings.email_max_attempts", 2):
        first = await process_renewal_email_queue(db_session, sender=sender)
        db_session.refresh(row)
        assert first[0]["status"] == "pending"
        assert row.attempts == 1
        assert row.last_error == "mailbox unavailable"

        second = await process_renewal_email_queue(db_session, sender=sender)
        db_session.refresh(row)
        assert second[0]["status"] == "failed"
        assert row.status == "failed"

        assert await process_renewal_email_queue(db_session, sender=sender) == []


@pytest.mark.asyncio
async def test_one_bad_row_does_not_block_batch(db_session):
    _queue(db_session, 1, to="bad@example.com")
    _queue(db_session, 1, to="good@example.com")

    async def sender(to, subject, html):
        if to.startswith("bad"):
            raise RuntimeError("rejected")
        return "ok"

    results = await process_renewal_email_queue(db_session, sender=sender)
    assert [r["status"] for r in results] == ["pending", "sent"]


@pytest.mark.asyncio
async def test_limit_respected(db_session):
    _queue(db_session, 5)
    results = await process_renewal_email_queue(db_session, limit=2, sender=AsyncMock(return_value="x"))
    assert len(results) == 2


@pytest.mark.asyncio
async def test_no_api_key_leaves_queue_alone(db_session):
    _queue(db_session, 1)
    with patch("coverwatch.services.email_queue.settings.resend_api_key", ""):
        assert await process_renewal_email_queue(db_session) == []
    assert db_session.query(RenewalEmail).one().status == "pending"


@pytest.mark.asyncio
async def test_send_email_posts_to_resend():
    resp = MagicMock()
    resp.json.return_value = {"id": "re_123"}
    resp.raise_for_status.return_value = None

    with patch("coverwatch.services.email_queue.http.post", new_callable=AsyncMock) as mock_post:
        mock_post.return_value = resp
        msg_id = await send_email("office@summitroofing.com", "Renew", "<p>hi</p>")

    assert msg_id == "re_123"
    assert mock_post.await_args.args[0] == RESEND_URL
    assert mock_post.await_args.kwargs["json"]["to"] == ["office@summitroofing.com"]


@pytest.mark.asyncio
async def test_send_email_raises_on_http_error():
    request = httpx.Request("POST", RESEND_URL)
    resp = httpx.Response(422, request=request, json={"message": "invalid to"})

    with patch("coverwatch.services.email_queue.http.post", new_callable=AsyncMock) as mock_post:
        mock_post.return_value = resp
        with pytest.raises(httpx.HTTPStatusError):
            await send_email("nobody", "Renew", "<p>hi</p>")
