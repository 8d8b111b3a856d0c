"""Rule-based field extraction for financial and KYC documents.

Each document type has its own parser built from ordered regex pattern
tables ``(pattern, base_confidence)``; the first pattern that matches a
field wins, so tables are ordered from most to least specific. Text is
normalized first: currency markers become ``"Rs "``, table pipes and tabs
become double spaces (column boundaries), and line breaks are preserved so
that line-item tables can be read row by row.

Fields that are not found are left out of the returned map entirely.

Tax components: when no explicit CGST/SGST/IGST amounts are printed, the
invoice parser approximates them from ``grand_total - subtotal``, split
evenly into CGST and SGST unless the text mentions IGST. This is a
heuristic, not a computation from rate tables, and is flagged with
``tax_inferred = True`` so validation and scoring can surface it.
"""

import re
from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from src.models import DocumentType
from src.utils.logger import get_logger
from src.validation.gstin import GSTIN_SEARCH_PATTERN, state_name

logger = get_logger(__name__)

FieldMap = dict[str, Any]
ConfidenceMap = dict[str, float]

_MONTHS = r"jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec"

# One capturing group; usable inside larger patterns.
DATE = (
    r"(\d{1,2}[/.\-]\d{1,2}[/.\-]\d{2,4}"
    r"|\d{4}-\d{1,2}-\d{1,2}"
    rf"|\d{{1,2}}[\s\-]+(?:{_MONTHS})[a-z]*\.?[\s\-,]+\d{{2,4}}"
    rf"|(?:{_MONTHS})[a-z]*\.?\s+\d{{1,2}},?\s+\d{{4}})"
)
AMOUNT = r"(?:Rs\s*)?([\d,]+(?:\.\d+)?)"
_SEP = r"\s*[:\-]?\s*"

DATE_FORMATS: list[str] = [
    "%d/%m/%Y",
    "%d/%m/%y",
    "%Y/%m/%d",
    "%d %b %Y",
    "%d %B %Y",
    "%d %b %y",
    "%b %d %Y",
    "%B %d %Y",
]

_INVOICE_NUMBER_PATTERNS: list[tuple[str, float]] = [
    (r"invoice\s*(?:no|number|num|#)\.?\s*[:#\-]?\s*([A-Z0-9][A-Z0-9\-/]{0,30})", 0.95),
    (r"\binv\s*(?:no|#)\.?\s*[:#\-]?\s*([A-Z0-9][A-Z0-9\-/]{0,30})", 0.9),
    (r"\bbill\s*(?:no|number|#)\.?\s*[:#\-]?\s*([A-Z0-9][A-Z0-9\-/]{0,30})", 0.85),
]

_INVOICE_DATE_PATTERNS: list[tuple[str, float]] = [
    (rf"invoice\s*date{_SEP}{DATE}", 0.95),
    (rf"(?:bill|document)\s*date{_SEP}{DATE}", 0.9),
    (rf"(?<!due )\bdated?{_SEP}{DATE}", 0.85),
]

_DUE_DATE_PATTERNS: list[tuple[str, float]] = [
    (rf"due\s*(?:date|by|on){_SEP}{DATE}", 0.9),
    (rf"payment\s*due{_SEP}{DATE}", 0.85),
]

_VENDOR_NAME_PATTERNS: list[tuple[str, float]] = [
    (
        r"^\s*(?:seller|vendor|supplier|sold\s+by|bill(?:ed)?\s+from|from)"
        r"\s*[:\-]\s*(.+)$",
        0.85,
    ),
]

_CUSTOMER_NAME_PATTERNS: list[tuple[str, float]] = [
    (
        r"^\s*(?:bill(?:ed)?\s+to|buyer|customer|client|recipient|ship\s+to|consignee)"
        r"\s*[:\-]\s*(.+)$",
        0.85,
    ),
]

_CUSTOMER_LABEL = re.compile(
    r"bill(?:ed)?\s+to|buyer|customer|recipient|consignee|ship\s+to", re.IGNORECASE
)

_SUBTOTAL_PATTERNS: list[tuple[str, float]] = [
    (rf"sub\s*-?\s*total{_SEP}{AMOUNT}", 0.95),
    (rf"taxable\s+(?:value|amount){_SEP}{AMOUNT}", 0.9),
    (rf"total\s+before\s+tax{_SEP}{AMOUNT}", 0.9),
    (rf"net\s+amount{_SEP}{AMOUNT}", 0.8),
]

_GRAND_TOTAL_PATTERNS: list[tuple[str, float]] = [
    (rf"grand\s*total{_SEP}{AMOUNT}", 0.97),
    (rf"total\s+(?:amount\s+)?(?:payable|due){_SEP}{AMOUNT}", 0.95),
    (rf"total\s+invoice\s+(?:value|amount){_SEP}{AMOUNT}", 0.93),
    (rf"(?:net|amount)\s+payable{_SEP}{AMOUNT}", 0.93),
    (rf"(?<!sub )(?<!sub-)(?<!sub)(?<![a-z])total(?:\s+amount)?{_SEP}{AMOUNT}", 0.85),
]

_ROUND_OFF_PATTERN = (
    r"round(?:ed|ing)?\s*-?\s*off\s*:?\s*(?:Rs\s*)?(\(?-?\s*[\d,]+(?:\.\d+)?\)?)"
)

_PAYMENT_TERMS_PATTERNS: list[tuple[str, float]] = [
    (r"^\s*(?:payment\s+)?terms\s*[:\-]\s*(.+)$", 0.8),
]

_PLACE_OF_SUPPLY_PATTERNS: list[tuple[str, float]] = [
    (r"place\s+of\s+supply\s*[:\-]\s*([^\n]+)$", 0.85),
]

_TAX_COMPONENTS = ("cgst", "sgst", "igst", "cess")

_TABLE_HEADER_PATTERNS: list[str] = [
    r"description.*qty.*rate.*amount",
    r"item.*quantity.*price.*total",
    r"particulars.*qty.*rate.*amt",
    r"(?:description|particulars|item).*(?:qty|quantity).*(?:rate|price).*(?:amount|amt|total|value)",
]

_TABLE_END = re.compile(
    r"^\s*(?:sub\s*-?\s*total|grand\s*total|total|taxable\s+value|cgst|sgst|igst"
    r"|cess|tax\b|round)",
    re.IGNORECASE,
)

_INLINE_ITEM = re.compile(
    r"^\s*(?P<description>[A-Za-z][A-Za-z0-9 .,&()/\-]*?)\s+"
    r"(?P<quantity>\d+(?:\.\d+)?)\s+"
    r"(?:Rs\s*)?(?P<rate>[\d,]+(?:\.\d+)?)\s+"
    r"(?:Rs\s*)?(?P<amount>[\d,]+(?:\.\d+)?)\s*$",
    re.MULTILINE,
)

_NUMBER = re.compile(r"^(?:Rs\s*)?-?[\d,]*\d(?:\.\d+)?$")

_RECEIPT_NUMBER_PATTERNS: list[tuple[str, float]] = [
    (r"receipt\s*(?:no|number|#)\.?\s*[:#\-]?\s*([A-Z0-9][A-Z0-9\-/]{0,30})", 0.95),
    (r"\b(?:txn|transaction)\s*(?:id|no|#)\.?\s*[:#\-]?\s*([A-Z0-9][A-Z0-9\-/]{3,30})", 0.85),
]

_PAYMENT_METHOD_PATTERN = (
    r"\b(cash|credit\s+card|debit\s+card|card|upi|cheque|neft|rtgs|imps|net\s*banking)\b"
)

_NAME_PATTERNS: list[tuple[str, float]] = [
    (r"^\s*name\s*[:\-/]?\s*([A-Za-z][A-Za-z .']+)$", 0.85),
]

_FATHER_NAME_PATTERNS: list[tuple[str, float]] = [
    (r"father'?s?\s*name\s*[:\-/]?\s*([A-Za-z][A-Za-z .']+)$", 0.85),
]

_DOB_PATTERNS: list[tuple[str, float]] = [
    (rf"(?:date\s+of\s+birth|d\.?o\.?b\.?){_SEP}/?\s*{DATE}", 0.9),
]

_ADDRESS_PATTERNS: list[tuple[str, float]] = [
    (r"^\s*address\s*[:\-]\s*(.+)$", 0.75),
]

_GST_CERT_PATTERNS: dict[str, list[tuple[str, float]]] = {
    "legal_name": [(r"legal\s+name(?:\s+of\s+business)?\s*[:\-]?\s*(.+)$", 0.9)],
    "trade_name": [(r"trade\s+name(?:,?\s*if\s+any)?\s*[:\-]?\s*(.+)$", 0.85)],
    "constitution": [(r"constitution\s+of\s+business\s*[:\-]?\s*(.+)$", 0.85)],
    "business_address": [
        (r"address\s+of\s+principal\s+place\s+of\s+business\s*[:\-]?\s*(.+)$", 0.8)
    ],
}

_REGISTRATION_DATE_PATTERNS: list[tuple[str, float]] = [
    (
        rf"(?:date\s+of\s+(?:liability|registration|validity\s+from)|registration\s+date)"
        rf"{_SEP}{DATE}",
        0.9,
    ),
]

_ACCOUNT_NUMBER_PATTERNS: list[tuple[str, float]] = [
    (r"(?:a/c|account)\s*(?:no|number|#)\.?\s*[:\-]?\s*([X\d][X\d \-]{4,22}\d)", 0.9),
]

_BANK_NAME_PATTERNS: list[tuple[str, float]] = [
    (r"^\s*((?:[A-Za-z&.]+\s+)*bank(?:\s+(?:ltd|limited))?\.?)\s*$", 0.8),
]

_STATEMENT_PERIOD_PATTERN = (
    rf"period{_SEP}(?:from\s+)?{DATE}\s*(?:to|-)\s*{DATE}"
)

_TRANSACTION_ROW = re.compile(
    rf"^\s*{DATE}\s+(.+?)\s+(-?[\d,]+\.\d{{2}})(?:\s*(?:cr|dr))?\s+"
    rf"(-?[\d,]+\.\d{{2}})\s*(?:cr|dr)?\s*$",
    re.IGNORECASE | re.MULTILINE,
)


def normalize_text(raw_text: str) -> str:
    """Normalize currency markers and column separators, keeping line breaks.

    Args:
        raw_text: Text as returned by a provider.

    Returns:
        Normalized text with empty lines removed.
    """
    text = raw_text.replace("\r\n", "\n").replace("\r", "\n").replace("\u00a0", " ")
    text = re.sub(r"(?:₹|\bINR\b|\bRs\b\.?)\s*", "Rs ", text, flags=re.IGNORECASE)
    text = text.replace("|", "  ").replace("\t", "  ")
    lines = [line.rstrip() for line in text.split("\n")]
    return "\n".join(line for line in lines if line.strip())


def parse_amount(value: str) -> float | None:
    """Parse ``"1,23,456.50"`` style amounts, returning ``None`` when invalid."""
    cleaned = value.replace("Rs", "").replace(",", "").strip()
    negative = cleaned.startswith("(") and cleaned.endswith(")")
    cleaned = cleaned.strip("()").replace(" ", "")
    try:
        amount = float(cleaned)
    except ValueError:
        return None
    return round(-amount if negative else amount, 2)


def parse_date(value: str) -> date | None:
    """Parse a printed date, assuming day-first ordering for numeric dates.

    Args:
        value: Date text such as ``15/01/2025``, ``15-Jan-2025`` or
            ``January 15, 2025``.

    Returns:
        The parsed date, or ``None`` if no known format matches.
    """
    cleaned = " ".join(value.replace(",", " ").split())
    if re.fullmatch(r"\d{1,4}[/.\-]\d{1,2}[/.\-]\d{1,4}", cleaned):
        cleaned = re.sub(r"[.\-]", "/", cleaned)
    else:
        cleaned = " ".join(cleaned.replace("-", " ").replace(".", " ").split())
        cleaned = re.sub(r"\bsept\b", "Sep", cleaned, flags=re.IGNORECASE)
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    return None


def search_patterns(
    patterns: list[tuple[str, float]],
    text: str,
    accept: Callable[[str], bool] | None = None,
    flags: int = re.IGNORECASE | re.MULTILINE,
) -> tuple[str, float] | None:
    """Return the first group of the first acceptable match, with its confidence.

    Args:
        patterns: Ordered ``(regex, base_confidence)`` pairs.
        text: Normalized text to search.
        accept: Optional predicate a captured value must satisfy.
        flags: Regex flags.

    Returns:
        ``(value, confidence)`` or ``None`` when nothing matches.
    """
    for pattern, confidence in patterns:
        for match in re.finditer(pattern, text, flags):
            value = match.group(1).strip()
            if value and (accept is None or accept(value)):
                return value, confidence
    return None


def _clean_party_name(value: str) -> str:
    name = re.split(r"\s{2,}|\bGSTIN\b|\bGST\s*No\b", value, flags=re.IGNORECASE)[0]
    return name.strip(" ,:-")


def _iso_date(value: str) -> str | None:
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else None


def _has_digit(value: str) -> bool:
    return any(ch.isdigit() for ch in value)


def _is_number(column: str) -> bool:
    return _NUMBER.match(column.strip()) is not None


class FieldExtractor:
    """Per-document-type field extractor over normalized text."""

    def __init__(self) -> None:
        self._parsers: dict[DocumentType, Callable[[str], tuple[FieldMap, ConfidenceMap]]] = {
            DocumentType.INVOICE: self._parse_invoice,
            DocumentType.RECEIPT: self._parse_receipt,
            DocumentType.PAN_CARD: self._parse_pan,
            DocumentType.AADHAAR: self._parse_aadhaar,
            DocumentType.GST_CERTIFICATE: self._parse_gst_certificate,
            DocumentType.BANK_STATEMENT: self._parse_bank_statement,
        }

    def extract_fields(self, raw_text: str, document_type: DocumentType) -> FieldMap:
        """Extract the field map for ``document_type``.

        Args:
            raw_text: Raw provider text.
            document_type: Classified document type.

        Returns:
            Field map containing only the fields that were found.
        """
        fields, _ = self.extract_with_confidence(raw_text, document_type)
        return fields

    def extract_with_confidence(
        self, raw_text: str, document_type: DocumentType
    ) -> tuple[FieldMap, ConfidenceMap]:
        """Extract fields along with per-field extraction confidence.

        Args:
            raw_text: Raw provider text.
            document_type: Classified document type.

        Returns:
            Tuple of (field map, per-field confidences).
        """
        parser = self._parsers.get(document_type)
        if parser is None:
            return {}, {}
        fields, confidences = parser(normalize_text(raw_text))
        logger.debug("Parsed %s fields: %s", document_type, sorted(fields))
        return fields, confidences

    def _take(
        self,
        fields: FieldMap,
        confidences: ConfidenceMap,
        name: str,
        patterns: list[tuple[str, float]],
        text: str,
        convert: Callable[[str], Any] | None = None,
        accept: Callable[[str], bool] | None = None,
    ) -> None:
        found = search_patterns(patterns, text, accept=accept)
        if found is None:
            return
        value, confidence = found
        if convert is not None:
            value = convert(value)
            if value is None:
                return
        fields[name] = value
        confidences[name] = confidence

    def _take_date(
        self,
        fields: FieldMap,
        confidences: ConfidenceMap,
        name: str,
        patterns: list[tuple[str, float]],
        text: str,
    ) -> None:
        self._take(
            fields,
            confidences,
            name,
            patterns,
            text,
            convert=_iso_date,
            accept=lambda v: parse_date(v) is not None,
        )

    def _find_gstins(self, text: str) -> list[tuple[str, str]]:
        """Return unique ``(gstin, line)`` pairs in order of appearance."""
        found: list[tuple[str, str]] = []
        seen: set[str] = set()
        for line in text.split("\n"):
            for match in re.finditer(GSTIN_SEARCH_PATTERN, line.upper()):
                gstin = match.group(0)
                if gstin not in seen:
                    seen.add(gstin)
                    found.append((gstin, line))
        return found

    def _assign_gstins(self, text: str, fields: FieldMap, confidences: ConfidenceMap) -> None:
        gstins = self._find_gstins(text)
        if not gstins:
            return

        customer_idx = next(
            (i for i, (_, line) in enumerate(gstins) if _CUSTOMER_LABEL.search(line)),
            None,
        )
        if customer_idx is None:
            vendor = gstins[0][0]
            customer = gstins[1][0] if len(gstins) > 1 else None
        else:
            customer = gstins[customer_idx][0]
            others = [g for i, (g, _) in enumerate(gstins) if i != customer_idx]
            vendor = others[0] if others else None

        if vendor:
            fields["vendor_gstin"] = vendor
            confidences["vendor_gstin"] = 0.98
        if customer:
            fields["customer_gstin"] = customer
            confidences["customer_gstin"] = 0.98

    def _fallback_vendor_name(self, text: str) -> str | None:
        """Use the first heading-like line as the vendor name."""
        for line in text.split("\n")[:5]:
            candidate = line.strip()
            if re.search(r"invoice|bill|receipt|original|duplicate|copy", candidate, re.I):
                continue
            if re.search(r"[A-Za-z]{3}", candidate) and not _has_digit(candidate):
                return _clean_party_name(candidate)
        return None

    def _parse_taxes(self, text: str, fields: FieldMap, confidences: ConfidenceMap) -> None:
        for component in _TAX_COMPONENTS:
            pattern = (
                rf"\b{component}\b\s*(?:\(?@?\s*\d+(?:\.\d+)?\s*%\)?)?\s*[:\-]?\s*"
                r"(?:Rs\s*)?([\d,]+(?:\.\d+)?)(?![\d.,]*\s*%)"
            )
            found = search_patterns([(pattern, 0.95)], text)
            if found is not None:
                amount = parse_amount(found[0])
                if amount is not None:
                    fields[component] = amount

        round_off = re.search(_ROUND_OFF_PATTERN, text, re.IGNORECASE)
        if round_off:
            amount = parse_amount(round_off.group(1).replace("-", ""))
            if amount is not None:
                negative = "-" in round_off.group(1) or round_off.group(1).startswith("(")
                fields["round_off"] = -abs(amount) if negative else amount

        if any(c in fields for c in ("cgst", "sgst", "igst")):
            confidences["tax_calculations"] = 0.95
            return

        subtotal = fields.get("subtotal")
        grand_total = fields.get("grand_total")
        if subtotal is None or grand_total is None:
            return
        delta = round(grand_total - subtotal, 2)
        if delta <= 0:
            return

        if re.search(r"\bigst\b", text, re.IGNORECASE):
            fields["igst"] = delta
        else:
            half = round(delta / 2, 2)
            fields["cgst"] = half
            fields["sgst"] = round(delta - half, 2)
        fields["tax_inferred"] = True
        confidences["tax_calculations"] = 0.6
        logger.info("Tax components inferred from total - subtotal (%.2f)", delta)

    def _parse_table_row(self, line: str, has_code_column: bool) -> dict[str, Any] | None:
        columns = [c.strip() for c in re.split(r"\s{2,}|\t", line.strip()) if c.strip()]
        if len(columns) < 3:
            return None

        numeric = [i for i, col in enumerate(columns) if i > 0 and _is_number(col)]
        if len(numeric) < 2:
            return None

        amount = parse_amount(columns[numeric[-1]])
        rate = parse_amount(columns[numeric[-2]])
        if amount is None or rate is None:
            return None

        description = next(
            (c for i, c in enumerate(columns) if i not in numeric and not c.isdigit()),
            None,
        )
        if not description:
            return None

        remaining = numeric[:-2]
        item: dict[str, Any] = {"description": description}
        if has_code_column and remaining:
            item["hsn_code"] = columns[remaining[0]]
            remaining = remaining[1:]

        quantity = parse_amount(columns[remaining[0]]) if remaining else None
        if quantity is None:
            quantity = round(amount / rate, 3) if rate else 1.0

        item.update({"quantity": quantity, "rate": rate, "amount": amount})
        return item

    def _parse_line_items(self, text: str) -> tuple[list[dict[str, Any]], float]:
        lines = text.split("\n")
        header_idx = next(
            (
                i
                for i, line in enumerate(lines)
                if any(re.search(p, line, re.IGNORECASE) for p in _TABLE_HEADER_PATTERNS)
            ),
            None,
        )

        if header_idx is not None:
            has_code = re.search(r"\b(?:hsn|sac)\b", lines[header_idx], re.IGNORECASE) is not None
            items: list[dict[str, Any]] = []
            for line in lines[header_idx + 1 :]:
                if _TABLE_END.match(line):
                    break
                row = self._parse_table_row(line, has_code)
                if row is not None:
                    items.append(row)
            if items:
                return items, 0.95

        items = []
        for match in _INLINE_ITEM.finditer(text):
            description = match.group("description").strip()
            if _TABLE_END.match(description):
                continue
            amount = parse_amount(match.group("amount"))
            rate = parse_amount(match.group("rate"))
            if not amount or rate is None:
                continue
            items.append(
                {
                    "description": description,
                    "quantity": float(match.group("quantity")),
                    "rate": rate,
                    "amount": amount,
                }
            )
        return items, 0.8

    def _parse_invoice(self, text: str) -> tuple[FieldMap, ConfidenceMap]:
        fields: FieldMap = {}
        conf: ConfidenceMap = {}

        self._take(fields, conf, "invoice_number", _INVOICE_NUMBER_PATTERNS, text, accept=_has_digit)
        self._take_date(fields, conf, "invoice_date", _INVOICE_DATE_PATTERNS, text)
        self._take_date(fields, conf, "due_date", _DUE_DATE_PATTERNS, text)
        self._assign_gstins(text, fields, conf)

        self._take(
            fields, conf, "vendor_name", _VENDOR_NAME_PATTERNS, text, convert=_clean_party_name
        )
        if "vendor_name" not in fields:
            fallback = self._fallback_vendor_name(text)
            if fallback:
                fields["vendor_name"] = fallback
                conf["vendor_name"] = 0.6
        self._take(
            fields, conf, "customer_name", _CUSTOMER_NAME_PATTERNS, text, convert=_clean_party_name
        )
        self._take(fields, conf, "place_of_supply", _PLACE_OF_SUPPLY_PATTERNS, text)
        self._take(fields, conf, "payment_terms", _PAYMENT_TERMS_PATTERNS, text)

        self._take(fields, conf, "subtotal", _SUBTOTAL_PATTERNS, text, convert=parse_amount)
        self._take(fields, conf, "grand_total", _GRAND_TOTAL_PATTERNS, text, convert=parse_amount)
        self._parse_taxes(text, fields, conf)

        items, items_conf = self._parse_line_items(text)
        if items:
            fields["line_items"] = items
            conf["line_items"] = items_conf
            coded = sum(1 for item in items if item.get("hsn_code"))
            if coded:
                conf["hsn_codes"] = 0.95 if coded == len(items) else 0.7
            if "subtotal" not in fields:
                fields["subtotal"] = round(sum(item["amount"] for item in items), 2)
                conf["subtotal"] = 0.7

        return fields, conf

    def _parse_receipt(self, text: str) -> tuple[FieldMap, ConfidenceMap]:
        fields: FieldMap = {}
        conf: ConfidenceMap = {}

        self._take(fields, conf, "receipt_number", _RECEIPT_NUMBER_PATTERNS, text, accept=_has_digit)
        self._take_date(
            fields, conf, "receipt_date", _INVOICE_DATE_PATTERNS + [(DATE, 0.7)], text
        )
        self._take(
            fields, conf, "vendor_name", _VENDOR_NAME_PATTERNS, text, convert=_clean_party_name
        )
        if "vendor_name" not in fields:
            fallback = self._fallback_vendor_name(text)
            if fallback:
                fields["vendor_name"] = fallback
                conf["vendor_name"] = 0.6
        self._take(fields, conf, "total_amount", _GRAND_TOTAL_PATTERNS, text, convert=parse_amount)

        method = re.search(_PAYMENT_METHOD_PATTERN, text, re.IGNORECASE)
        if method:
            fields["payment_method"] = " ".join(method.group(1).lower().split())

        gstins = self._find_gstins(text)
        if gstins:
            fields["vendor_gstin"] = gstins[0][0]
            conf["vendor_gstin"] = 0.98
        return fields, conf

    def _parse_pan(self, text: str) -> tuple[FieldMap, ConfidenceMap]:
        fields: FieldMap = {}
        conf: ConfidenceMap = {}

        match = re.search(r"\b([A-Z]{5}\d{4}[A-Z])\b", text.upper())
        if match:
            fields["pan_number"] = match.group(1)
            conf["pan_number"] = 0.95
        self._take(fields, conf, "father_name", _FATHER_NAME_PATTERNS, text)
        self._take(fields, conf, "name", _NAME_PATTERNS, text)
        self._take_date(fields, conf, "date_of_birth", _DOB_PATTERNS, text)
        return fields, conf

    def _parse_aadhaar(self, text: str) -> tuple[FieldMap, ConfidenceMap]:
        fields: FieldMap = {}
        conf: ConfidenceMap = {}

        match = re.search(r"\b(\d{4}\s?\d{4}\s?\d{4})\b", text)
        if match:
            fields["aadhaar_number"] = re.sub(r"\s", "", match.group(1))
            conf["aadhaar_number"] = 0.95
        self._take(fields, conf, "name", _NAME_PATTERNS, text)
        self._take_date(fields, conf, "date_of_birth", _DOB_PATTERNS, text)

        gender = re.search(r"\b(male|female|transgender)\b", text, re.IGNORECASE)
        if gender:
            fields["gender"] = gender.group(1).lower()
        self._take(fields, conf, "address", _ADDRESS_PATTERNS, text)
        return fields, conf

    def _parse_gst_certificate(self, text: str) -> tuple[FieldMap, ConfidenceMap]:
        fields: FieldMap = {}
        conf: ConfidenceMap = {}

        gstins = self._find_gstins(text)
        if gstins:
            gstin = gstins[0][0]
            fields["gstin"] = gstin
            conf["gstin"] = 0.98
            state = state_name(gstin[:2])
            if state:
                fields["state"] = state
        for name, patterns in _GST_CERT_PATTERNS.items():
            self._take(fields, conf, name, patterns, text, convert=_clean_party_name)
        self._take_date(fields, conf, "registration_date", _REGISTRATION_DATE_PATTERNS, text)
        return fields, conf

    def _parse_bank_statement(self, text: str) -> tuple[FieldMap, ConfidenceMap]:
        fields: FieldMap = {}
        conf: ConfidenceMap = {}

        self._take(
            fields,
            conf,
            "account_number",
            _ACCOUNT_NUMBER_PATTERNS,
            text,
            convert=lambda v: re.sub(r"[\s\-]", "", v),
        )
        ifsc = re.search(r"\b([A-Z]{4}0[A-Z0-9]{6})\b", text.upper())
        if ifsc:
            fields["ifsc"] = ifsc.group(1)
        self._take(fields, conf, "bank_name", _BANK_NAME_PATTERNS, text)

        period = re.search(_STATEMENT_PERIOD_PATTERN, text, re.IGNORECASE)
        if period:
            start, end = parse_date(period.group(1)), parse_date(period.group(2))
            if start and end:
                fields["period_start"] = start.isoformat()
                fields["period_end"] = end.isoformat()

        for name, label in (("opening_balance", "opening"), ("closing_balance", "closing")):
            self._take(
                fields,
                conf,
                name,
                [(rf"{label}\s+balance{_SEP}{AMOUNT}", 0.9)],
                text,
                convert=parse_amount,
            )

        transactions: list[dict[str, Any]] = []
        previous_balance = fields.get("opening_balance")
        for match in _TRANSACTION_ROW.finditer(text):
            txn_date = parse_date(match.group(1))
            amount = parse_amount(match.group(3))
            balance = parse_amount(match.group(4))
            if txn_date is None or amount is None or balance is None:
                continue
            txn: dict[str, Any] = {
                "date": txn_date.isoformat(),
                "description": match.group(2).strip(),
                "amount": amount,
                "balance": balance,
            }
            if previous_balance is not None:
                txn["direction"] = "credit" if balance >= previous_balance else "debit"
            previous_balance = balance
            transactions.append(txn)
        if transactions:
            fields["transactions"] = transactions
        return fields, conf
