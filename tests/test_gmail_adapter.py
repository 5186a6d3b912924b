from __future__ import annotations

import base64
import email
import json
from email import policy
from pathlib import Path

import pytest

from fakes import FakeGmailService, gmail_message
from wc_dispatch.gmail_adapter import UNREAD_QUERY, GmailAdapter
from wc_dispatch.logger import JsonlLogger


def _adapter(tmp_path: Path, svc: FakeGmailService) -> GmailAdapter:
    return GmailAdapter(svc, JsonlLogger(path=tmp_path / "log.jsonl", component="gmail"), run_id="r1")


def test_list_unread_newest_first(tmp_path: Path) -> None:
    svc = FakeGmailService(
        [
            gmail_message("old", subject="Old", body="a", internal_date=1000),
            gmail_message("new", subject="New", body="b", internal_date=3000),
            gmail_message("mid", subject="Mid", body="c", internal_date=2000),
        ]
    )

    emails = _adapter(tmp_path, svc).list_unread(max_results=10)

    assert [e.id for e in emails] == ["new", "mid", "old"]
    assert svc.queries == [UNREAD_QUERY]


def test_search_logs_counts(tmp_path: Path) -> None:
    svc = FakeGmailService([gmail_message("a"), gmail_message("b")])
    adapter = _adapter(tmp_path, svc)

    assert adapter.search_message_ids("is:unread", max_results=1) == ["a"]

    records = [json.loads(x) for x in (tmp_path / "log.jsonl").read_text(encoding="utf-8").splitlines()]
    ok = [r for r in records if r["event"] == "gmail_search_ok"]
    assert ok and ok[0]["count"] == 1 and ok[0]["run_id"] == "r1"


def test_get_raw_email(tmp_path: Path) -> None:
    svc = FakeGmailService([gmail_message("m1", subject="Hi", body="Name: Al")])

    raw = _adapter(tmp_path, svc).get_raw_email("m1")

    assert raw.subject == "Hi"
    assert raw.body_text == "Name: Al"


def test_fetch_failure_is_wrapped(tmp_path: Path) -> None:
    with pytest.raises(RuntimeError) as e:
        _adapter(tmp_path, FakeGmailService()).fetch_messages(["missing"])
    assert "Gmail fetch failed" in str(e.value)


def test_send_html_builds_mime_message(tmp_path: Path) -> None:
    svc = FakeGmailService()

    message_id = _adapter(tmp_path, svc).send_html(
        to="jane@example.com",
        subject="Job Confirmed",
        html="<p>See you soon</p>",
        sender='"Biz" <biz@example.com>',
    )

    assert message_id == "sent-1"
    raw = base64.urlsafe_b64decode(svc.sent[0]["raw"])
    parsed = email.message_from_bytes(raw, policy=policy.default)
    assert parsed["To"] == "jane@example.com"
    assert parsed["Subject"] == "Job Confirmed"
    assert "See you soon" in parsed.get_body(preferencelist=("html",)).get_content()


def test_send_failure_is_wrapped(tmp_path: Path) -> None:
    svc = FakeGmailService()
    svc.send_error = OSError("smtp down")

    with pytest.raises(RuntimeError) as e:
        _adapter(tmp_path, svc).send_html(to="x@example.com", subject="s", html="<p>x</p>")
    assert "x@example.com" in str(e.value)
