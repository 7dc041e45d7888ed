import pytest

from app.utils.commands import (
    DAYS,
    ContractorAction,
    parse_available_hours,
    parse_contractor_command,
    parse_customer_rating,
    parse_money,
    parse_percent,
)


@pytest.mark.parametrize(
    "text, action",
    [
        ("A", ContractorAction.APPROVE),
        (" a ", ContractorAction.APPROVE),
        ("c", ContractorAction.CALL_CUSTOMER),
        ("X", ContractorAction.PASS),
        ("dashboard", ContractorAction.DASHBOARD),
        ("OTW", ContractorAction.ON_THE_WAY),
        ("I'm on the way now", ContractorAction.ON_THE_WAY),
        ("job done!", ContractorAction.JOB_DONE),
        ("Completed", ContractorAction.JOB_DONE),
        ("setup", ContractorAction.SETUP),
        ("Approve", ContractorAction.UNKNOWN),
        ("Q", ContractorAction.UNKNOWN),
        ("Q abc", ContractorAction.UNKNOWN),
        ("Q 0", ContractorAction.UNKNOWN),
        ("", ContractorAction.UNKNOWN),
    ],
)
def test_contractor_command_actions(text, action):
    assert parse_contractor_command(text).action is action


def test_custom_quote_amount():
    command = parse_contractor_command("q $1,250.50")
    assert command.action is ContractorAction.CUSTOM_QUOTE
    assert command.amount == 1250.5


def test_invoice_keeps_description_case():
    command = parse_contractor_command("invoice 150 Plumbing repair - fixed leaky pipe")
    assert command.action is ContractorAction.INVOICE
    assert command.amount == 150
    assert command.description == "Plumbing repair - fixed leaky pipe"


@pytest.mark.parametrize("text", ["INVOICE", "INVOICE 150", "INVOICE abc fixed it", "INVOICE -5 refund"])
def test_incomplete_invoice_gets_usage(text):
    assert parse_contractor_command(text).action is ContractorAction.INVOICE_USAGE


@pytest.mark.parametrize(
    "text, expected",
    [("75", 75.0), ("$75", 75.0), ("1,250", 1250.0), (" 99.5 ", 99.5), ("seventy", None), ("", None), ("nan", None)],
)
def test_parse_money(text, expected):
    assert parse_money(text) == expected


def test_parse_percent():
    assert parse_percent("25") == pytest.approx(0.25)
    assert parse_percent("50%") == pytest.approx(0.5)
    assert parse_percent("none") is None


@pytest.mark.parametrize(
    "text, rating, feedback",
    [
        ("5", 5, None),
        ("4 great job", 4, "great job"),
        ("1. Never showed up", 1, "Never showed up"),
    ],
)
def test_customer_rating(text, rating, feedback):
    parsed = parse_customer_rating(text)
    assert (parsed.rating, parsed.feedback) == (rating, feedback)


@pytest.mark.parametrize("text", ["", "0", "6", "10", "45 minutes late", "3/5", "great"])
def test_not_a_rating(text):
    assert parse_customer_rating(text) is None


def test_available_hours_ranges():
    hours = parse_available_hours("Mon-Fri 8-5, Sat 9-2")
    assert hours == {day: "8-5" for day in DAYS[:5]} | {"saturday": "9-2"}


def test_available_hours_wraps_week():
    assert set(parse_available_hours("Fri-Mon 10-4")) == {"friday", "saturday", "sunday", "monday"}


def test_available_hours_always():
    assert parse_available_hours("Available 24/7") == {day: "0-24" for day in DAYS}


def test_available_hours_unparsed_kept_verbatim():
    assert parse_available_hours("weekday mornings mostly") == {"general": "weekday mornings mostly"}
