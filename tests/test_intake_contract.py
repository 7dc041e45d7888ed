import json

import pytest

from app.types.intake_contract import extract_intake_payload, normalize_category
from app.types.job import Urgency


def _block(**fields):
    payload = {"problem_summary": "Leaking kitchen sink", "zip_code": "90210", **fields}
    return f"<job_request>{json.dumps(payload)}</job_request>"


def test_plain_reply_has_no_payload():
    visible, payload = extract_intake_payload("  How urgent is this?  ")
    assert visible == "How urgent is this?"
    assert payload is None


def test_block_is_split_from_visible_text():
    reply = "Thanks! Finding someone now.\n" + _block(service_category="Plumber", urgency="3", address="1 Elm St")
    visible, payload = extract_intake_payload(reply)
    assert visible == "Thanks! Finding someone now."
    assert payload.service_category == "plumbing"
    assert payload.urgency is Urgency.HIGH
    assert payload.address == "1 Elm St"


def test_defaults():
    _, payload = extract_intake_payload(_block())
    assert payload.service_category == "general_handyman"
    assert payload.urgency is Urgency.MEDIUM
    assert payload.details is None


def test_zip_is_pulled_out_of_a_full_address():
    _, payload = extract_intake_payload(_block(zip_code="123 Main St, Beverly Hills, CA 90210-1234"))
    assert payload.zip_code == "90210"


@pytest.mark.parametrize(
    "reply",
    [
        "<job_request>{not json}</job_request>",
        _block(zip_code="unknown"),
        _block(problem_summary="   "),
    ],
)
def test_malformed_block_is_ignored(reply):
    visible, payload = extract_intake_payload("Almost there. " + reply)
    assert payload is None
    assert visible == "Almost there."


def test_unknown_urgency_is_medium():
    _, payload = extract_intake_payload(_block(urgency="whenever"))
    assert payload.urgency is Urgency.MEDIUM


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Electrician", "electrical"),
        ("appliance repair", "appliance_repair"),
        ("general-handyman", "general_handyman"),
        ("", "general_handyman"),
        (None, "general_handyman"),
        ("pool cleaning", "pool_cleaning"),
    ],
)
def test_normalize_category(raw, expected):
    assert normalize_category(raw) == expected
