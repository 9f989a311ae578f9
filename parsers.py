# parsers.py (v1.2)
import re

# Characters that break a PostgREST or=(...) filter expression
_FILTER_RESERVED = re.compile(r"[,()*\\:\"]")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def normalize_scanned_code(raw) -> str:
    """
    Cleans a decoded barcode payload: bytes are decoded as UTF-8, control
    characters (GS separators, CR/LF from keyboard-wedge scanners) and
    surrounding whitespace are removed.
    """
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    return _CONTROL_CHARS.sub("", raw).strip()


def ean_check_digit(digits: str) -> int:
    """Check digit for EAN-8/EAN-13/UPC-A bodies (the code without its last digit)."""
    total = 0
    for position, char in enumerate(reversed(digits)):
        weight = 3 if position % 2 == 0 else 1
        total += int(char) * weight
    return (10 - total % 10) % 10


def is_valid_ean(code: str) -> bool:
    if not code.isdigit() or len(code) not in (8, 12, 13):
        return False
    return ean_check_digit(code[:-1]) == int(code[-1])


def build_search_filter(query: str):
    """
    Builds the PostgREST `or` parameter for a case-insensitive match on
    name or code. Returns None for a blank query.
    """
    cleaned = _FILTER_RESERVED.sub(" ", query or "").strip()
    cleaned = re.sub(r"\s+", " ", cleaned)
    if not cleaned:
        return None
    return f"(name.ilike.*{cleaned}*,code.ilike.*{cleaned}*)"


def parse_non_negative_int(value, field_name):
    """Returns (int, None) or (None, error message)."""
    if value is None or str(value).strip() == "":
        return None, f"{field_name} is required."
    try:
        number = int(str(value).strip())
    except ValueError:
        return None, f"{field_name} must be a whole number."
    if number < 0:
        return None, f"{field_name} cannot be negative."
    return number, None


def parse_optional_price(value, field_name):
    """Empty input means no price. Returns (float | None, error message | None)."""
    if value is None or str(value).strip() == "":
        return None, None
    text = str(value).strip().replace(" ", "")
    # "1.234,50" and "1,234.50" both parse
    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", ".")
    try:
        number = float(text)
    except ValueError:
        return None, f"{field_name} must be a number."
    if number < 0:
        return None, f"{field_name} cannot be negative."
    return number, None
