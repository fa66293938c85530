from dataclasses import replace
from datetime import date

import pytest

from models import (
    FieldPath,
    Invoice,
    InvoiceFieldError,
    LineItem,
    UnknownFieldError,
    add_item,
    default_invoice,
    get_field,
    remove_item,
    set_field,
    set_item_field,
)


@pytest.fixture
def inv():
    return default_invoice(date(2024, 3, 15))


def test_default_snapshot(inv):
    assert inv.title == "INVOICE"
    assert inv.logo == ""
    assert inv.meta.invoice_number == "INV-2024-001"
    assert inv.meta.date == "2024-03-15"
    assert inv.meta.service_period == ""
    assert inv.currency == "PKR"
    assert len(inv.items) == 1
    assert inv.items[0].name == "Website Design & Development"
    assert inv.total == 5000.0
    assert inv.bank.swift == "EXAMPBK"
    assert inv.footer_note == "Thank you for your business!"


def test_total_cannot_be_set_directly(inv):
    with pytest.raises(TypeError):
        Invoice(total=10)
    with pytest.raises(ValueError):
        replace(inv, total=10)


def test_total_follows_item_edits(inv):
    inv = add_item(inv)
    assert inv.total == 5000.0
    inv = set_item_field(inv, 1, "amount", "1500")
    assert inv.total == 6500.0
    inv = set_item_field(inv, 0, "amount", "not a number")
    assert inv.total == 1500.0
    inv = set_item_field(inv, 0, "amount", "")
    assert inv.total == 1500.0
    inv = remove_item(inv, 0)
    assert inv.total == 1500.0
    assert [it.amount for it in inv.items] == ["1500"]


def test_removing_only_item_gives_zero_total(inv):
    inv = remove_item(inv, 0)
    assert inv.items == ()
    assert inv.total == 0


def test_total_matches_sum_after_mixed_sequence(inv):
    amounts = ["10", 20, "x", "2.5", None]
    for a in amounts:
        inv = add_item(inv)
        inv = set_item_field(inv, len(inv.items) - 1, "amount", a)
    inv = remove_item(inv, 3)
    expected = 5000.0 + 10 + 20 + 2.5
    assert inv.total == pytest.approx(expected)


def test_add_item_appends_blank_row(inv):
    inv = add_item(inv)
    assert inv.items[-1] == LineItem(name="", type="", amount=0)


def test_setters_do_not_mutate_previous_snapshot(inv):
    edited = set_field(inv, "from.name", "Acme")
    edited = set_item_field(edited, 0, "name", "Audit")
    assert inv.sender.name == "Your Company"
    assert inv.items[0].name == "Website Design & Development"
    assert edited.sender.name == "Acme"
    assert edited.items[0].name == "Audit"


@pytest.mark.parametrize(
    "path, value",
    [
        ("title", "TAX INVOICE"),
        ("from.phone", "+60 12 345"),
        ("to.company", "Globex"),
        ("meta.service_period", "Jan 2024"),
        ("bank.iban", "PK00TEST"),
        (FieldPath.FOOTER_NOTE, "Pay in 30 days"),
    ],
)
def test_set_field_by_path(inv, path, value):
    out = set_field(inv, path, value)
    assert get_field(out, path) == value
    assert out.total == inv.total


def test_set_field_unknown_path(inv):
    with pytest.raises(UnknownFieldError):
        set_field(inv, "from.fax", "123")
    with pytest.raises(UnknownFieldError):
        set_field(inv, "total", 1)


def test_currency_must_be_supported(inv):
    assert set_field(inv, "currency", "myr").currency == "MYR"
    with pytest.raises(InvoiceFieldError):
        set_field(inv, "currency", "EUR")


def test_item_edit_out_of_range_is_ignored(inv):
    assert set_item_field(inv, 5, "name", "ghost") is inv
    assert set_item_field(inv, -1, "name", "ghost") is inv
    assert remove_item(inv, 3) is inv


def test_item_edit_unknown_field(inv):
    with pytest.raises(UnknownFieldError):
        set_item_field(inv, 0, "qty", 2)


def test_to_dict(inv):
    data = inv.to_dict()
    assert data["total"] == 5000.0
    assert data["sender"]["name"] == "Your Company"
    assert data["items"][0]["type"] == "Web Development"
