# models.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Optional

from currency import CURRENCY_SYMBOLS, coerce_amount


class InvoiceFieldError(ValueError):
    """A value outside the declared domain of an invoice field."""


class UnknownFieldError(InvoiceFieldError):
    """A field path or item field that the invoice does not have."""


# -----------------------------
# Snapshot types
# -----------------------------
@dataclass(frozen=True)
class Sender:
    name: str = ""
    address: str = ""
    email: str = ""
    phone: str = ""


@dataclass(frozen=True)
class Recipient:
    company: str = ""
    address: str = ""
    email: str = ""


@dataclass(frozen=True)
class InvoiceMeta:
    invoice_number: str = ""
    date: str = ""              # ISO yyyy-mm-dd
    service_period: str = ""    # "" = not shown


@dataclass(frozen=True)
class LineItem:
    name: str = ""
    type: str = ""
    amount: float | str = 0     # number or numeric string, kept as typed


@dataclass(frozen=True)
class BankDetails:
    name: str = ""
    account_title: str = ""
    account_number: str = ""
    iban: str = ""
    swift: str = ""
    address: str = ""


def compute_total(items) -> float:
    return sum((coerce_amount(it.amount) for it in items), 0.0)


@dataclass(frozen=True)
class Invoice:
    """
    Immutable invoice snapshot. Every edit produces a new Invoice.

    `total` is derived from `items` on construction and cannot be passed in,
    so a snapshot never carries a stale total.
    """
    title: str = "INVOICE"
    logo: str = ""              # data URL, "" = no logo
    sender: Sender = field(default_factory=Sender)
    recipient: Recipient = field(default_factory=Recipient)
    meta: InvoiceMeta = field(default_factory=InvoiceMeta)
    items: tuple[LineItem, ...] = ()
    currency: str = "PKR"
    bank: BankDetails = field(default_factory=BankDetails)
    footer_note: str = ""
    total: float = field(init=False, default=0.0)

    def __post_init__(self):
        items = tuple(self.items)
        object.__setattr__(self, "items", items)
        object.__setattr__(self, "total", compute_total(items))

    def to_dict(self) -> dict:
        data = asdict(self)
        data["items"] = [asdict(it) for it in self.items]
        return data


# -----------------------------
# Default snapshot
# -----------------------------
def default_invoice(today: Optional[date] = None, currency: str = "PKR") -> Invoice:
    """
    The snapshot a new editor starts from. Invoice number and date embed `today`
    (defaults to the current local date).
    """
    today = today or date.today()
    if currency not in CURRENCY_SYMBOLS:
        currency = "PKR"
    return Invoice(
        title="INVOICE",
        logo="",
        sender=Sender(
            name="Your Company",
            address="123 Street, City, Country",
            email="company@example.com",
            phone="+1 234 567 890",
        ),
        recipient=Recipient(
            company="Client's Company",
            address="456 Avenue, City, Country",
            email="client@example.com",
        ),
        meta=InvoiceMeta(
            invoice_number=f"INV-{today.year}-001",
            date=today.isoformat(),
            service_period="",
        ),
        items=(
            LineItem(name="Website Design & Development", type="Web Development", amount=5000.00),
        ),
        currency=currency,
        bank=BankDetails(
            name="Example Bank",
            account_title="Your Company LLC",
            account_number="1234567890",
            iban="EX1234567890",
            swift="EXAMPBK",
            address="Bank Address, City, Country",
        ),
        footer_note="Thank you for your business!",
    )


# -----------------------------
# Field paths
# -----------------------------
class FieldPath(str, Enum):
    TITLE = "title"
    LOGO = "logo"
    CURRENCY = "currency"
    FOOTER_NOTE = "footer_note"

    FROM_NAME = "from.name"
    FROM_ADDRESS = "from.address"
    FROM_EMAIL = "from.email"
    FROM_PHONE = "from.phone"

    TO_COMPANY = "to.company"
    TO_ADDRESS = "to.address"
    TO_EMAIL = "to.email"

    META_INVOICE_NUMBER = "meta.invoice_number"
    META_DATE = "meta.date"
    META_SERVICE_PERIOD = "meta.service_period"

    BANK_NAME = "bank.name"
    BANK_ACCOUNT_TITLE = "bank.account_title"
    BANK_ACCOUNT_NUMBER = "bank.account_number"
    BANK_IBAN = "bank.iban"
    BANK_SWIFT = "bank.swift"
    BANK_ADDRESS = "bank.address"


# path prefix -> Invoice attribute holding that section
_SECTIONS = {
    "from": "sender",
    "to": "recipient",
    "meta": "meta",
    "bank": "bank",
}

ITEM_FIELDS = ("name", "type", "amount")


def resolve_field_path(path) -> FieldPath:
    if isinstance(path, FieldPath):
        return path
    try:
        return FieldPath(str(path).strip())
    except ValueError:
        raise UnknownFieldError(f"Unknown invoice field: {path!r}") from None


def _target(path: FieldPath) -> tuple[str | None, str]:
    section, dot, leaf = path.value.partition(".")
    if not dot:
        return None, section
    return _SECTIONS[section], leaf


def get_field(invoice: Invoice, path) -> str:
    section, attr = _target(resolve_field_path(path))
    holder = getattr(invoice, section) if section else invoice
    return getattr(holder, attr)


# -----------------------------
# Mutations (pure: snapshot in, snapshot out)
# -----------------------------
def set_field(invoice: Invoice, path, value) -> Invoice:
    fp = resolve_field_path(path)
    value = "" if value is None else str(value)

    if fp is FieldPath.CURRENCY:
        value = value.strip().upper()
        if value not in CURRENCY_SYMBOLS:
            raise InvoiceFieldError(f"Unsupported currency: {value!r}")

    section, attr = _target(fp)
    if section is None:
        return replace(invoice, **{attr: value})
    part = getattr(invoice, section)
    return replace(invoice, **{section: replace(part, **{attr: value})})


def set_item_field(invoice: Invoice, index: int, field_name: str, value) -> Invoice:
    """
    Edit one field of one line item. An index outside the current items is
    ignored (an edit can arrive for a row that was just removed).
    """
    if field_name not in ITEM_FIELDS:
        raise UnknownFieldError(f"Unknown line item field: {field_name!r}")
    if not (0 <= index < len(invoice.items)):
        return invoice

    if field_name != "amount":
        value = "" if value is None else str(value)

    items = list(invoice.items)
    items[index] = replace(items[index], **{field_name: value})
    return replace(invoice, items=tuple(items))


def add_item(invoice: Invoice) -> Invoice:
    return replace(invoice, items=invoice.items + (LineItem(name="", type="", amount=0),))


def remove_item(invoice: Invoice, index: int) -> Invoice:
    if not (0 <= index < len(invoice.items)):
        return invoice
    items = invoice.items[:index] + invoice.items[index + 1:]
    return replace(invoice, items=items)
