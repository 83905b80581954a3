"""Tests for header-based automated sender detection."""

from __future__ import annotations

import pytest

from lead_intake.intelligence import is_obviously_not_a_lead


@pytest.mark.parametrize(
    "sender",
    [
        "no-reply@bigco.com",
        "NoReply@bigco.com",
        "do-not-reply@shop.example",
        "mailer-daemon@mx.example",
        "notifications@github.com",
        "bounce@lists.example",
    ],
)
def test_automated_addresses_are_rejected(sender: str) -> None:
    assert is_obviously_not_a_lead(sender, {}) is True


def test_person_with_plain_headers_is_not_rejected() -> None:
    headers = {"from": "Jane <jane@acme.com>", "subject": "Pricing question"}
    assert is_obviously_not_a_lead("jane@acme.com", headers) is False


def test_local_part_match_is_anchored() -> None:
    assert is_obviously_not_a_lead("reply-to-jane@acme.com", {}) is False


def test_mailing_list_headers_are_rejected() -> None:
    assert is_obviously_not_a_lead(
        "news@store.example", {"List-Unsubscribe": "<mailto:unsub@store.example>"}
    )
    assert is_obviously_not_a_lead("digest@store.example", {"precedence": " Bulk "})
    assert not is_obviously_not_a_lead("person@store.example", {"Precedence": "first-class"})


def test_blocked_domains_are_rejected() -> None:
    blocked = ("vendor.com", " Partner.IO ")
    assert is_obviously_not_a_lead("sam@Vendor.com", {}, blocked_domains=blocked)
    assert is_obviously_not_a_lead("ops@partner.io", {}, blocked_domains=blocked)
    assert not is_obviously_not_a_lead("sam@sub.vendor.com", {}, blocked_domains=blocked)
