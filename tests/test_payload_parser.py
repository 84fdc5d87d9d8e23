"""
Payload parser tests - JSON decoding, size ceiling and per-provider shape checks.
"""
import dataclasses
import json

import pytest
from unittest.mock import patch

from hookgate.errors import PayloadValidationError
from hookgate.schemas.webhook_payloads import WebhookSource
from hookgate.services.payload_parser import (
    MAX_PAYLOAD_BYTES,
    UNKNOWN_EVENT_TYPE,
    is_payload_size_valid,
    parse_json_payload,
    parse_webhook_payload,
)


def _body(payload) -> bytes:
    return json.dumps(payload).encode("utf-8")


def _padded(size: int) -> bytes:
    """A valid test-source JSON body of exactly `size` bytes."""
    prefix, suffix = b'{"pad":"', b'"}'
    return prefix + b"x" * (size - len(prefix) - len(suffix)) + suffix


class TestSizeCeiling:
    def test_exactly_one_mib_accepted(self):
        body = _padded(MAX_PAYLOAD_BYTES)
        assert len(body) == MAX_PAYLOAD_BYTES
        result = parse_webhook_payload(body, WebhookSource.TEST)
        assert result.success is True

    def test_one_mib_plus_one_rejected_before_json_parsing(self):
        body = _padded(MAX_PAYLOAD_BYTES + 1)
        with patch("hookgate.services.payload_parser.json.loads") as loads:
            result = parse_webhook_payload(body, WebhookSource.TEST)
        loads.assert_not_called()
        assert result.success is False
        assert result.kind == PayloadValidationError.TOO_LARGE
        assert result.error == f"Payload exceeds maximum size of {MAX_PAYLOAD_BYTES} bytes"

    def test_custom_ceiling(self):
        assert is_payload_size_valid(b"12345", max_bytes=5) is True
        assert is_payload_size_valid(b"123456", max_bytes=5) is False
        assert is_payload_size_valid(None) is False


class TestJsonDecoding:
    def test_empty_body(self):
        result = parse_json_payload(b"")
        assert result.kind == PayloadValidationError.EMPTY_BODY
        assert result.error == "Empty request body"

    def test_whitespace_body(self):
        assert parse_json_payload(b"  \n").kind == PayloadValidationError.EMPTY_BODY

    def test_malformed_json(self):
        result = parse_webhook_payload(b"{not json", WebhookSource.STRIPE)
        assert result.success is False
        assert result.kind == PayloadValidationError.INVALID_JSON
        assert result.error.startswith("Invalid JSON")

    def test_invalid_utf8(self):
        result = parse_json_payload(b"\xff\xfe{")
        assert result.kind == PayloadValidationError.INVALID_JSON

    def test_raise_for_error(self):
        result = parse_webhook_payload(b"", WebhookSource.TEST)
        with pytest.raises(PayloadValidationError) as exc_info:
            result.raise_for_error()
        assert exc_info.value.kind == PayloadValidationError.EMPTY_BODY
        assert exc_info.value.status_code == 400


class TestStripeShape:
    def test_valid_event(self, stripe_invoice_paid):
        result = parse_webhook_payload(_body(stripe_invoice_paid), WebhookSource.STRIPE)
        assert result.success is True
        assert result.data.event_type == "invoice.paid"
        assert result.data.data == stripe_invoice_paid

    def test_parsed_event_carries_plain_json_only(self, stripe_invoice_paid):
        parsed = parse_webhook_payload(_body(stripe_invoice_paid), WebhookSource.STRIPE).data
        assert [f.name for f in dataclasses.fields(parsed)] == ["source", "event_type", "data"]
        assert type(parsed.data) is dict

    def test_wrong_object(self, stripe_invoice_paid):
        stripe_invoice_paid["object"] = "invoice"
        result = parse_webhook_payload(_body(stripe_invoice_paid), WebhookSource.STRIPE)
        assert result.kind == PayloadValidationError.INVALID_SHAPE
        assert result.error == "Invalid Stripe event object"

    @pytest.mark.parametrize("field", ["id", "type", "data"])
    def test_missing_required_field(self, stripe_invoice_paid, field):
        del stripe_invoice_paid[field]
        result = parse_webhook_payload(_body(stripe_invoice_paid), WebhookSource.STRIPE)
        assert result.success is False
        assert result.error == f"Missing or invalid {field}"

    def test_numeric_id_rejected(self, stripe_invoice_paid):
        stripe_invoice_paid["id"] = 123
        result = parse_webhook_payload(_body(stripe_invoice_paid), WebhookSource.STRIPE)
        assert result.error == "Missing or invalid id"

    def test_array_body_rejected(self):
        result = parse_webhook_payload(b"[1, 2]", WebhookSource.STRIPE)
        assert result.error == "Payload must be an object"

    def test_unknown_fields_allowed(self, stripe_invoice_paid):
        stripe_invoice_paid["brand_new_field"] = {"x": 1}
        assert parse_webhook_payload(_body(stripe_invoice_paid), WebhookSource.STRIPE).success


class TestGitHubShape:
    def test_push(self, github_push):
        result = parse_webhook_payload(_body(github_push), WebhookSource.GITHUB, "push")
        assert result.success is True
        assert result.data.event_type == "push"

    def test_event_type_header_required(self, github_push):
        result = parse_webhook_payload(_body(github_push), WebhookSource.GITHUB)
        assert result.error == "Missing GitHub event type header"

    def test_push_requires_ref(self, github_push):
        del github_push["ref"]
        result = parse_webhook_payload(_body(github_push), WebhookSource.GITHUB, "push")
        assert result.error == "Missing or invalid ref"

    def test_requires_repository_or_organization(self, github_push):
        del github_push["repository"]
        result = parse_webhook_payload(_body(github_push), WebhookSource.GITHUB, "push")
        assert result.error == "Missing repository or organization"

    def test_organization_is_enough(self, github_push):
        del github_push["repository"]
        github_push["organization"] = {"id": 9}
        assert parse_webhook_payload(_body(github_push), WebhookSource.GITHUB, "push").success

    def test_requires_sender(self, github_push):
        del github_push["sender"]
        result = parse_webhook_payload(_body(github_push), WebhookSource.GITHUB, "push")
        assert result.error == "Missing or invalid sender"

    def test_pull_request_requires_numeric_number(self):
        payload = {
            "sender": {"login": "a"},
            "repository": {"id": 1},
            "pull_request": {"id": 2},
            "number": "7",
        }
        result = parse_webhook_payload(_body(payload), WebhookSource.GITHUB, "pull_request")
        assert result.error == "Missing or invalid number"
        payload["number"] = 7
        assert parse_webhook_payload(_body(payload), WebhookSource.GITHUB, "pull_request").success

    def test_issues_require_issue_number(self):
        payload = {"sender": {"login": "a"}, "repository": {"id": 1}, "issue": {"title": "x"}}
        result = parse_webhook_payload(_body(payload), WebhookSource.GITHUB, "issues")
        assert result.error == "Missing or invalid issue.number"

    def test_unknown_event_type_gets_common_checks_only(self):
        payload = {"sender": {"login": "a"}, "repository": {"id": 1}}
        result = parse_webhook_payload(_body(payload), WebhookSource.GITHUB, "star")
        assert result.success is True
        assert result.data.event_type == "star"


class TestClerkShape:
    def test_valid(self, clerk_user_deleted):
        result = parse_webhook_payload(_body(clerk_user_deleted), WebhookSource.CLERK)
        assert result.success is True
        assert result.data.event_type == "user.deleted"

    def test_data_must_be_object(self, clerk_user_deleted):
        clerk_user_deleted["data"] = []
        result = parse_webhook_payload(_body(clerk_user_deleted), WebhookSource.CLERK)
        assert result.error == "Missing or invalid data"

    def test_wrong_object(self, clerk_user_deleted):
        clerk_user_deleted["object"] = "user"
        result = parse_webhook_payload(_body(clerk_user_deleted), WebhookSource.CLERK)
        assert result.error == "Invalid Clerk event object"


class TestTestSource:
    def test_event_type_from_hint(self):
        result = parse_webhook_payload(b'{"type":"body.type"}', WebhookSource.TEST, "header.type")
        assert result.data.event_type == "header.type"

    def test_event_type_from_body(self):
        result = parse_webhook_payload(b'{"type":"body.type"}', WebhookSource.TEST)
        assert result.data.event_type == "body.type"

    def test_event_type_unknown(self):
        result = parse_webhook_payload(b'["anything"]', WebhookSource.TEST)
        assert result.success is True
        assert result.data.event_type == UNKNOWN_EVENT_TYPE


class TestUnknownSource:
    def test_unknown_source(self):
        result = parse_webhook_payload(b"{}", "bitbucket")
        assert result.kind == PayloadValidationError.UNKNOWN_SOURCE
