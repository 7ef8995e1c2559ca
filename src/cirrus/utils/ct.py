import hmac


def ct_eq(a: bytes, b: bytes) -> bool:
    """Constant-time equality for two byte strings (length must match)."""
    if len(a) != len(b):
        return False
    return hmac.compare_digest(a, b)


def ct_eq_hex(a: str, b: str) -> bool:
    """Case-insensitive constant-time comparison of two hex digests."""
    return ct_eq(a.strip().lower().encode(), b.strip().lower().encode())
