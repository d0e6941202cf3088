"""QR/ESR payment reference generation (Modulo 10 recursive)."""

from __future__ import annotations

import re

REFERENCE_LENGTH = 27
_BODY_LENGTH = REFERENCE_LENGTH - 1
_MOD10_TABLE = (0, 9, 4, 6, 8, 2, 7, 1, 3, 5)
_NON_DIGITS = re.compile(r"[^0-9]")
_REFERENCE = re.compile(r"[0-9]{27}")


def mod10_check_digit(digits: str) -> int:
    carry = 0
    for ch in digits:
        carry = _MOD10_TABLE[(carry + int(ch)) % 10]
    return (10 - carry) % 10


def _numeric_body(invoice_id: str) -> str:
    numeric = _NON_DIGITS.sub("", invoice_id)
    if not numeric:
        # No digits at all: use the zero-padded character codes instead
        numeric = "".join(str(ord(ch)).zfill(3) for ch in invoice_id)
    if len(numeric) > _BODY_LENGTH:
        return numeric[-_BODY_LENGTH:]
    return numeric.zfill(_BODY_LENGTH)


def generate_reference(invoice_id: str) -> str:
    """Derive a 27 digit QR reference from an arbitrary invoice identifier."""
    body = _numeric_body(invoice_id or "")
    return body + str(mod10_check_digit(body))


def is_valid_reference(reference: str) -> bool:
    if not _REFERENCE.fullmatch(reference or ""):
        return False
    return mod10_check_digit(reference[:-1]) == int(reference[-1])
