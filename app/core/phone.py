import re

DEFAULT_PHONE_PREFIX = "+968"


def normalize_phone(phone: str, prefix: str = DEFAULT_PHONE_PREFIX) -> str:
    """Compact international form: separators stripped, country code added when missing.

    Blank input stays blank.
    """
    clean = re.sub(r"[\s\-().]+", "", phone or "")
    if not clean or clean.startswith("+"):
        return clean
    digits = prefix.lstrip("+")
    if clean.startswith(digits):
        return f"+{clean}"
    return f"+{digits}{clean}"
