"""Test forwarded-mail unwrapping."""
import pytest
from orderpulse.mail.forwarded import (
    clean_subject,
    extract_original_body,
    extract_original_sender,
    is_forwarded_subject,
)

GMAIL_FORWARD = """Hi, can you track this one?

---------- Forwarded message ---------
From: Amazon.com <shipment-tracking@amazon.com>
Date: Mon, Mar 2, 2026 at 9:30 AM
Subject: Your Amazon.com order has shipped
To: <me@example.com>

Your package is on its way.
Order #112-9387462-1029384
"""

OUTLOOK_FORWARD = """FYI

-----Original Message-----
From: Best Buy <BestBuyInfo@emailinfo.bestbuy.com>
Sent: Monday, March 2, 2026 9:30 AM
To: me@example.com
Subject: Your order is ready

Your order BBY01-806543210 is ready for pickup.
"""

APPLE_FORWARD = """Sent from my iPhone

Begin forwarded message:

From: Target <orders@oe.target.com>
Subject: Your order has been cancelled
Date: March 2, 2026 at 9:30:00 AM EST

We cancelled order 902-1234567.
"""


class TestSubject:
    def test_forward_prefixes_stripped(self):
        assert clean_subject("Fwd: FW: Your order has shipped") == "Your order has shipped"

    def test_plain_subject_untouched(self):
        assert clean_subject("  Your order has shipped ") == "Your order has shipped"
        assert clean_subject(None) == ""

    def test_is_forwarded(self):
        assert is_forwarded_subject("Fwd: Your order")
        assert is_forwarded_subject("fw: Your order")
        assert not is_forwarded_subject("Your order")
        assert not is_forwarded_subject(None)


class TestOriginalBody:
    def test_gmail_forward(self):
        body = extract_original_body(GMAIL_FORWARD)
        assert body.startswith("Your package is on its way.")
        assert "Forwarded message" not in body
        assert "Subject:" not in body

    def test_outlook_forward(self):
        assert extract_original_body(OUTLOOK_FORWARD) == "Your order BBY01-806543210 is ready for pickup."

    def test_apple_forward(self):
        assert extract_original_body(APPLE_FORWARD) == "We cancelled order 902-1234567."

    def test_not_forwarded_passes_through(self):
        assert extract_original_body("  Order #123 confirmed.  ") == "Order #123 confirmed."

    def test_truncated(self):
        assert len(extract_original_body("x" * 50, max_length=10)) == 10

    def test_empty(self):
        assert extract_original_body(None) == ""


class TestOriginalSender:
    @pytest.mark.parametrize("body, sender", [
        (GMAIL_FORWARD, "shipment-tracking@amazon.com"),
        (OUTLOOK_FORWARD, "bestbuyinfo@emailinfo.bestbuy.com"),
        (APPLE_FORWARD, "orders@oe.target.com"),
    ])
    def test_sender_after_marker(self, body, sender):
        assert extract_original_sender(body) == sender

    def test_not_forwarded(self):
        assert extract_original_sender("From: someone@example.com\nhello") is None
