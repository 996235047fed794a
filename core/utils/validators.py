"""
Candidate identity normalization.

Ownership protection compares candidates by normalized email, phone and
LinkedIn URL, then by a fuzzy full-name match. Everything here is pure so the
same rules apply at write time (unique columns) and at lookup time.
"""

import re
import unicodedata
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Optional
from urllib.parse import urlsplit

from email_validator import validate_email as _validate_email, EmailNotValidError


DEFAULT_PHONE_COUNTRY_CODE = "31"

_LINKEDIN_PATH = re.compile(r"^/(in|pub)/([^/?#]+)", re.IGNORECASE)


def validate_email(email: str) -> tuple[bool, Optional[str]]:
    """
    Validate email address format.

    Args:
        email: Email address to validate

    Returns:
        Tuple of (is_valid, normalized_email or error_message)
    """
    try:
        validation = _validate_email(email, check_deliverability=False)
        return True, validation.normalized
    except EmailNotValidError as e:
        return False, str(e)


def normalize_email(email: Optional[str]) -> Optional[str]:
    """
    Normalize an email for identity comparison.

    The whole address is lower-cased: mailbox providers treat the local part
    case-insensitively in practice, and ownership must not be dodged by case.
    Raises ValueError for malformed addresses.
    """
    if email is None or not email.strip():
        return None
    is_valid, result = validate_email(email.strip())
    if not is_valid:
        raise ValueError(f"Invalid email address: {result}")
    return result.lower()


def normalize_phone(
    phone: Optional[str], default_country_code: str = DEFAULT_PHONE_COUNTRY_CODE
) -> Optional[str]:
    """
    Normalize a phone number to an E.164-like string (``+<digits>``).

    ``00`` international prefixes become ``+``; a national number with a
    single leading trunk ``0`` gets the default country code.
    """
    if phone is None or not phone.strip():
        return None
    cleaned = re.sub(r"[^\d+]", "", phone.strip())
    if cleaned.startswith("00"):
        cleaned = "+" + cleaned[2:]
    if not cleaned.startswith("+"):
        cleaned = "+" + default_country_code + cleaned.lstrip("0")

    digits = cleaned[1:]
    if not digits.isdigit() or not 7 <= len(digits) <= 15:
        raise ValueError("Phone number must contain between 7 and 15 digits")
    return cleaned


def normalize_linkedin_url(url: Optional[str]) -> Optional[str]:
    """
    Normalize a LinkedIn profile URL to ``linkedin.com/in/<slug>``.

    Scheme, ``www.``/country subdomains, query strings, fragments and
    trailing slashes are ignored.
    """
    if url is None or not url.strip():
        return None
    raw = url.strip()
    if "://" not in raw:
        raw = "https://" + raw
    parts = urlsplit(raw)
    host = parts.netloc.lower()
    if not (host == "linkedin.com" or host.endswith(".linkedin.com")):
        raise ValueError("Invalid LinkedIn URL format")
    match = _LINKEDIN_PATH.match(parts.path)
    if not match:
        raise ValueError("Invalid LinkedIn URL format")
    return f"linkedin.com/in/{match.group(2).lower()}"


def normalize_name(first_name: Optional[str], last_name: Optional[str]) -> Optional[str]:
    """Lower-case, accent-stripped, whitespace-collapsed full name."""
    full = " ".join(part.strip() for part in (first_name, last_name) if part and part.strip())
    if not full:
        return None
    decomposed = unicodedata.normalize("NFKD", full)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", stripped).lower()


def name_similarity(name1: Optional[str], name2: Optional[str]) -> float:
    """Similarity ratio (0-1) between two normalized names."""
    if not name1 or not name2:
        return 0.0
    return SequenceMatcher(None, name1, name2).ratio()


@dataclass(frozen=True)
class CandidateIdentity:
    """Normalized identity of a submitted candidate."""

    email: Optional[str] = None
    phone: Optional[str] = None
    linkedin_url: Optional[str] = None
    full_name: Optional[str] = None

    @classmethod
    def from_raw(
        cls,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        linkedin_url: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> "CandidateIdentity":
        identity = cls(
            email=normalize_email(email),
            phone=normalize_phone(phone),
            linkedin_url=normalize_linkedin_url(linkedin_url),
            full_name=normalize_name(first_name, last_name),
        )
        if not identity.has_strong_key:
            raise ValueError(
                "A candidate needs at least an email, phone or LinkedIn URL"
            )
        return identity

    @property
    def has_strong_key(self) -> bool:
        return bool(self.email or self.phone or self.linkedin_url)
