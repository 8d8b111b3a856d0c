"""Typed invoice model built from the schema-less field map.

The field extractor emits a plain dict; :meth:`InvoiceData.from_fields`
converts it to a validated pydantic model (amounts as ``Decimal`` rounded to
paise, dates as ``date``) so validation, scoring, duplicate detection and
journal generation all work on checked types.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

PAISE = Decimal("0.01")

_MONEY_FIELDS = ("subtotal", "cgst", "sgst", "igst", "cess", "tcs", "round_off", "grand_total")


def to_money(value: Any) -> Decimal | None:
    """Convert a number or numeric string to a Decimal rounded to two places.

    Raises:
        ValueError: If ``value`` is not a finite number.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = value.replace(",", "").replace("Rs", "").strip()
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not an amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not an amount: {value!r}")
    return amount.quantize(PAISE, rounding=ROUND_HALF_UP)


class InvoiceType(StrEnum):
    """Direction of an invoice from the client's point of view."""

    SALES = "sales"
    PURCHASE = "purchase"


class Party(BaseModel):
    """Seller or buyer as printed on the invoice."""

    name: str | None = None
    gstin: str | None = None

    @property
    def state_code(self) -> str | None:
        """Two-digit GST state code taken from the GSTIN, if present."""
        if self.gstin and len(self.gstin) >= 2 and self.gstin[:2].isdigit():
            return self.gstin[:2]
        return None


class LineItem(BaseModel):
    """One invoice row."""

    description: str
    quantity: Decimal = Decimal("1")
    rate: Decimal = Decimal("0")
    amount: Decimal
    hsn_code: str | None = None

    @field_validator("amount", "rate", mode="before")
    @classmethod
    def _round_money(cls, value: Any) -> Decimal | None:
        return to_money(value)

    @field_validator("hsn_code", mode="before")
    @classmethod
    def _code_as_text(cls, value: Any) -> str | None:
        return None if value is None else str(value).strip() or None


class TransactionClassification(BaseModel):
    """Optional B2B/B2C metadata supplied with the invoice."""

    is_b2b: bool | None = None
    is_b2c: bool | None = None


class InvoiceData(BaseModel):
    """Validated invoice used by every stage after field extraction."""

    invoice_number: str | None = None
    invoice_date: date | None = None
    due_date: date | None = None
    invoice_type: InvoiceType = InvoiceType.PURCHASE
    vendor: Party = Field(default_factory=Party)
    customer: Party = Field(default_factory=Party)
    line_items: list[LineItem] = Field(default_factory=list)
    subtotal: Decimal | None = None
    cgst: Decimal = Decimal("0")
    sgst: Decimal = Decimal("0")
    igst: Decimal = Decimal("0")
    cess: Decimal = Decimal("0")
    tcs: Decimal = Decimal("0")
    round_off: Decimal = Decimal("0")
    grand_total: Decimal | None = None
    tax_inferred: bool = False
    place_of_supply: str | None = None
    transaction_classification: TransactionClassification | None = None

    @field_validator(*_MONEY_FIELDS, mode="before")
    @classmethod
    def _round_money(cls, value: Any) -> Decimal | None:
        return to_money(value)

    @property
    def tax_total(self) -> Decimal:
        """Sum of every tax component."""
        return self.cgst + self.sgst + self.igst + self.cess + self.tcs

    @property
    def is_inter_state(self) -> bool | None:
        """True for inter-state supply, ``None`` when a state code is unknown."""
        seller, buyer = self.vendor.state_code, self.customer.state_code
        if seller is None or buyer is None:
            return None
        return seller != buyer

    @classmethod
    def from_fields(
        cls,
        fields: dict[str, Any],
        invoice_type: InvoiceType | str = InvoiceType.PURCHASE,
    ) -> "InvoiceData":
        """Build an invoice from an extracted or corrected field map.

        Args:
            fields: Field map as produced by the field extractor.
            invoice_type: Sales or purchase, decided by the caller.

        Returns:
            The validated invoice.

        Raises:
            pydantic.ValidationError: If a present field has an unusable value.
        """
        items = [
            item
            for item in fields.get("line_items") or []
            if item.get("description") and item.get("amount") is not None
        ]
        data: dict[str, Any] = {
            "invoice_number": fields.get("invoice_number"),
            "invoice_date": fields.get("invoice_date"),
            "due_date": fields.get("due_date"),
            "invoice_type": invoice_type,
            "vendor": {"name": fields.get("vendor_name"), "gstin": fields.get("vendor_gstin")},
            "customer": {
                "name": fields.get("customer_name"),
                "gstin": fields.get("customer_gstin"),
            },
            "line_items": items,
            "tax_inferred": bool(fields.get("tax_inferred", False)),
            "place_of_supply": fields.get("place_of_supply"),
            "transaction_classification": fields.get("transaction_classification"),
        }
        for name in _MONEY_FIELDS:
            if fields.get(name) is not None:
                data[name] = fields[name]
        return cls(**data)
