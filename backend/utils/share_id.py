"""
Shareable ids and payment-rail reference helpers.

The shareable id is a reversible, URL-safe label derived from an external
account id so the id can appear in links. It is NOT encryption: anyone can
reverse it. Do not rely on it to hide anything.
"""

import base64
import binascii
from urllib.parse import urlparse


def obfuscate_id(account_id: str) -> str:
    """URL-safe base64 of the account id without padding."""
    if not account_id:
        raise ValueError("account_id must be a non-empty string")
    encoded = base64.urlsafe_b64encode(account_id.encode("utf-8")).decode("ascii")
    return encoded.rstrip("=")


def deobfuscate_id(shareable_id: str) -> str:
    """Inverse of obfuscate_id. Raises ValueError for malformed input."""
    if not shareable_id:
        raise ValueError("shareable_id must be a non-empty string")
    padded = shareable_id + "=" * (-len(shareable_id) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError) as e:
        raise ValueError(f"Malformed shareable id: {shareable_id!r}") from e


def extract_customer_id(customer_url: str) -> str:
    """Last path segment of a payment-rail customer URL."""
    path = urlparse(customer_url).path.rstrip("/")
    customer_id = path.rsplit("/", 1)[-1]
    if not customer_id:
        raise ValueError(f"No customer id in {customer_url!r}")
    return customer_id
