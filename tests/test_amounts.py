"""
Test amount truncation and ledger message parsing.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from goldstake.services.xrpl_client import decode_currency, encode_currency, parse_transaction
from goldstake.utils.amounts import format_amount, to_decimal, truncate_amount


def test_truncate_floors_to_six_places():
    assert truncate_amount("1.2345679") == Decimal("1.234567")
    assert truncate_amount(Decimal("24.6913400001")) == Decimal("24.691340")
    assert truncate_amount("0.0000009") == Decimal("0")


def test_truncate_is_idempotent():
    once = truncate_amount("3.14159265")
    assert truncate_amount(once) == once


def test_float_input_does_not_drift():
    assert to_decimal(0.1) == Decimal("0.1")
    assert truncate_amount(0.3) == Decimal("0.3")


def test_invalid_amount_raises():
    with pytest.raises(ValueError):
        to_decimal("not-a-number")


def test_format_amount_has_no_exponent_or_trailing_zeros():
    assert format_amount(Decimal("24.691340")) == "24.69134"
    assert format_amount(Decimal("100")) == "100"
    assert format_amount(Decimal("1E-6")) == "0.000001"


def test_currency_codes_longer_than_three_chars_are_hex_encoded():
    wire = encode_currency("RLUSD")
    assert len(wire) == 40
    assert wire.startswith("524C555344")
    assert decode_currency(wire) == "RLUSD"
    assert encode_currency("GPC") == "GPC"
    assert decode_currency("GPC") == "GPC"


def test_parse_stream_message_uses_delivered_amount():
    message = {
        "type": "transaction",
        "validated": True,
        "hash": "AB" * 32,
        "tx_json": {
            "TransactionType": "Payment",
            "Account": "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh",
            "Destination": "rQU2LkjttEmWyY56jgmGXZND5yriWihZMW",
            "DeliverMax": {"currency": encode_currency("RLUSD"), "issuer": "rIssuer", "value": "5"},
            "date": 0,
        },
        "meta": {
            "TransactionResult": "tesSUCCESS",
            "delivered_amount": {"currency": encode_currency("RLUSD"), "issuer": "rIssuer", "value": "4.12345678"},
        },
    }

    event = parse_transaction(message)

    assert event.hash == "AB" * 32
    assert event.is_payment
    assert event.validated
    assert event.currency == "RLUSD"
    assert event.issuer == "rIssuer"
    assert event.amount == Decimal("4.123456")
    assert event.date == datetime(2000, 1, 1)


def test_parse_account_tx_v1_entry_with_xrp_amount():
    entry = {
        "validated": True,
        "tx": {
            "TransactionType": "Payment",
            "hash": "CD" * 32,
            "Account": "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh",
            "Destination": "r9H4gzDaxtsB41iMYbUDNtLHjCeBZH88kb",
            "Amount": "1500000",
        },
        "meta": {"delivered_amount": "1500000"},
    }

    event = parse_transaction(entry)

    assert event.hash == "CD" * 32
    assert event.currency == "XRP"
    assert event.amount == Decimal("1.5")
    assert event.date is None


def test_parse_non_payment_is_flagged():
    entry = {
        "validated": True,
        "hash": "EF" * 32,
        "tx_json": {"TransactionType": "TrustSet", "Account": "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"},
        "meta": {},
    }

    event = parse_transaction(entry)

    assert event is not None
    assert not event.is_payment
