"""
Data protection helpers for the ledger and candidate records.

This module provides:
- PII masking for log lines (candidate emails and phone numbers)
- An append-only guard for ledger-style tables (transactions, placement
  fees, forecasts, performance snapshots)
"""

import logging
from typing import Any

from sqlalchemy import event

logger = logging.getLogger(__name__)


class ImmutableRecordError(Exception):
    """Raised when code tries to change or delete an append-only record."""


# =======================================
# Data Masking Utilities
# =======================================


def mask_sensitive_data(value: str, visible_chars: int = 4) -> str:
    """
    Masks sensitive data by showing only the last `visible_chars` characters.

    Args:
        value (str): The sensitive data to mask.
        visible_chars (int): Number of characters to leave visible at the end.

    Returns:
        str: The masked data.
    """
    if not value or len(value) <= visible_chars:
        return "*" * len(value or "")
    return "*" * (len(value) - visible_chars) + value[-visible_chars:]


def mask_email(email: str | None) -> str:
    """
    Masks an email address by showing only the first character of the local part
    and the domain.

    Args:
        email (str): The email address to mask.

    Returns:
        str: The masked email address.
    """
    if not email:
        return ""
    if email.count("@") != 1:
        return mask_sensitive_data(email)
    local_part, domain = email.split("@")
    masked_local = "*" if len(local_part) <= 1 else local_part[0] + "*" * (len(local_part) - 1)
    return f"{masked_local}@{domain}"


def mask_phone(phone: str | None) -> str:
    """Masks a phone number by showing only the last 4 digits."""
    if not phone:
        return ""
    return mask_sensitive_data(phone, visible_chars=4)


def describe_identity(identity: Any) -> str:
    """Loggable, masked rendering of a CandidateIdentity-like object."""
    parts = []
    if getattr(identity, "email", None):
        parts.append(f"email={mask_email(identity.email)}")
    if getattr(identity, "phone", None):
        parts.append(f"phone={mask_phone(identity.phone)}")
    if getattr(identity, "linkedin_url", None):
        parts.append("linkedin=set")
    return " ".join(parts) or "no-identity"


# =======================================
# Append-only Decorator
# =======================================


def append_only(model_class):
    """
    Decorator that makes an ORM model append-only.

    Rows can be inserted; any flush that would update or delete one raises
    ImmutableRecordError. Corrections are new rows, never edits.
    """

    def _reject(action: str):
        def listener(mapper, connection, target):
            logger.error(
                f"Blocked {action} of append-only {model_class.__name__} "
                f"id={getattr(target, 'id', None)}"
            )
            raise ImmutableRecordError(
                f"{model_class.__name__} records are append-only ({action} rejected)"
            )

        return listener

    event.listen(model_class, "before_update", _reject("update"))
    event.listen(model_class, "before_delete", _reject("delete"))
    model_class.__append_only__ = True
    return model_class
