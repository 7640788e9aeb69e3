import re
from typing import Optional, Tuple

# Body of the identifier: 7 or 8 digits, followed by one check character
MIN_BODY_DIGITS = 7
MAX_BODY_DIGITS = 8


def compute_check_digit(body: str) -> str:
    """
    Mod-11 check digit of a numeric identifier body.

    Digits are weighted 2..7 cyclically starting from the rightmost one.
    A remainder of 11 maps to '0' and 10 maps to 'K'.
    """
    total = 0
    factor = 2
    for ch in reversed(body):
        total += int(ch) * factor
        factor = 2 if factor == 7 else factor + 1

    dv = 11 - (total % 11)
    if dv == 11:
        return "0"
    if dv == 10:
        return "K"
    return str(dv)


def is_valid_id(body: Optional[str], check_digit: Optional[str]) -> bool:
    if not body or not body.isdigit():
        return False
    if not (MIN_BODY_DIGITS <= len(body) <= MAX_BODY_DIGITS):
        return False
    if not check_digit:
        return False
    return compute_check_digit(body) == check_digit.upper()


def format_id(body: str) -> str:
    """12345678 -> 12.345.678"""
    clean = re.sub(r"[.\-]", "", body or "")
    groups = []
    while len(clean) > 3:
        groups.insert(0, clean[-3:])
        clean = clean[:-3]
    if clean:
        groups.insert(0, clean)
    return ".".join(groups)


def normalize_id(value: str) -> str:
    """Canonical 'body-DV' form used for exact identity lookups."""
    clean = re.sub(r"[^0-9kK]", "", value or "").upper()
    if len(clean) < 2:
        return clean
    return f"{clean[:-1]}-{clean[-1]}"


def parse_recognized_text(raw_text: str) -> Tuple[str, str]:
    """
    Split raw OCR text of the identifier field into (body, check_digit).

    Whitespace and any character other than digits and K are dropped. With 9+
    characters the first 8 are the body and the 9th the check digit; with 7-8
    characters the last one is the check digit. A check digit is never
    invented: a missing one stays empty so the page is flagged.
    """
    cleaned = re.sub(r"[^0-9kK]", "", re.sub(r"\s+", "", raw_text or ""))

    body = ""
    dv = ""
    if len(cleaned) >= MAX_BODY_DIGITS + 1:
        body = re.sub(r"\D", "", cleaned[:MAX_BODY_DIGITS])
        dv = cleaned[MAX_BODY_DIGITS:MAX_BODY_DIGITS + 1]
    elif len(cleaned) >= MIN_BODY_DIGITS + 1:
        body = re.sub(r"\D", "", cleaned[:-1])
        dv = cleaned[-1]
    elif len(cleaned) == MIN_BODY_DIGITS and cleaned.isdigit():
        body = cleaned

    return body, dv.upper()
