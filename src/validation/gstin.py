"""GSTIN structure, state-code and check-character validation.

A GSTIN is 15 characters: a two-digit state code, the holder's 10-character
PAN, an entity number, the letter ``Z`` and a check character. The check
character is computed over the first 14 characters: characters map to their
index in ``0-9A-Z``, weights alternate 1 and 2, a product above 9 contributes
the sum of its two digits, and the check index is ``(10 - total % 10) % 10``.
"""

import re
from dataclasses import dataclass

GSTIN_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
GSTIN_LENGTH = 15
GSTIN_PATTERN = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]$")
GSTIN_SEARCH_PATTERN = r"\b[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]\b"

STATE_CODES: dict[str, str] = {
    "01": "Jammu and Kashmir",
    "02": "Himachal Pradesh",
    "03": "Punjab",
    "04": "Chandigarh",
    "05": "Uttarakhand",
    "06": "Haryana",
    "07": "Delhi",
    "08": "Rajasthan",
    "09": "Uttar Pradesh",
    "10": "Bihar",
    "11": "Sikkim",
    "12": "Arunachal Pradesh",
    "13": "Nagaland",
    "14": "Manipur",
    "15": "Mizoram",
    "16": "Tripura",
    "17": "Meghalaya",
    "18": "Assam",
    "19": "West Bengal",
    "20": "Jharkhand",
    "21": "Odisha",
    "22": "Chhattisgarh",
    "23": "Madhya Pradesh",
    "24": "Gujarat",
    "25": "Daman and Diu",
    "26": "Dadra and Nagar Haveli and Daman and Diu",
    "27": "Maharashtra",
    "28": "Andhra Pradesh (before division)",
    "29": "Karnataka",
    "30": "Goa",
    "31": "Lakshadweep",
    "32": "Kerala",
    "33": "Tamil Nadu",
    "34": "Puducherry",
    "35": "Andaman and Nicobar Islands",
    "36": "Telangana",
    "37": "Andhra Pradesh",
}


@dataclass
class GSTINCheck:
    """Outcome of validating one GSTIN."""

    gstin: str
    valid: bool
    message: str
    state_code: str | None = None
    state_name: str | None = None


def clean_gstin(value: str) -> str:
    """Strip whitespace and uppercase a GSTIN as printed."""
    return re.sub(r"\s+", "", value).upper()


def state_name(state_code: str) -> str | None:
    """Return the state or union territory for a two-digit GST state code."""
    return STATE_CODES.get(state_code)


def compute_check_character(prefix: str) -> str:
    """Compute the check character for the first 14 characters of a GSTIN.

    Args:
        prefix: The first 14 characters, uppercase, from ``0-9A-Z``.

    Returns:
        The expected 15th character.

    Raises:
        ValueError: If ``prefix`` is not 14 characters of the alphabet.
    """
    if len(prefix) != GSTIN_LENGTH - 1:
        raise ValueError(f"Expected 14 characters, got {len(prefix)}")

    total = 0
    for position, char in enumerate(prefix):
        index = GSTIN_ALPHABET.find(char)
        if index < 0:
            raise ValueError(f"Invalid GSTIN character: {char!r}")
        product = index * (2 if position % 2 else 1)
        if product > 9:
            product = product // 10 + product % 10
        total += product
    return GSTIN_ALPHABET[(10 - total % 10) % 10]


def validate_checksum(gstin: str) -> bool:
    """Return True when the last character equals the computed check character."""
    cleaned = clean_gstin(gstin)
    if len(cleaned) != GSTIN_LENGTH:
        return False
    try:
        return compute_check_character(cleaned[:-1]) == cleaned[-1]
    except ValueError:
        return False


def validate_gstin(value: str | None) -> GSTINCheck:
    """Validate length, shape, state code and check character of a GSTIN.

    Args:
        value: GSTIN as extracted; whitespace and case are normalized first.

    Returns:
        A :class:`GSTINCheck` whose ``message`` is suitable for display.
    """
    if not value:
        return GSTINCheck(gstin="", valid=False, message="GSTIN is missing")

    gstin = clean_gstin(value)
    if len(gstin) != GSTIN_LENGTH:
        return GSTINCheck(
            gstin, False, f"GSTIN must be 15 characters, got {len(gstin)}"
        )
    if not GSTIN_PATTERN.match(gstin):
        return GSTINCheck(gstin, False, "GSTIN format is invalid")

    code = gstin[:2]
    if not 1 <= int(code) <= 37:
        return GSTINCheck(gstin, False, f"Invalid state code {code} (must be 01-37)")

    if not validate_checksum(gstin):
        return GSTINCheck(
            gstin,
            False,
            f"GSTIN check character is invalid (expected {compute_check_character(gstin[:-1])})",
            state_code=code,
            state_name=state_name(code),
        )

    return GSTINCheck(
        gstin,
        True,
        f"Valid GSTIN ({state_name(code)})",
        state_code=code,
        state_name=state_name(code),
    )
