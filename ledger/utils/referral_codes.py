"""Referral code generation."""

import secrets
import string

from ledger.config.constants import (
    REFERRAL_CODE_LENGTH,
    VIRTUAL_REFERRAL_CODE_PREFIX,
)

REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_referral_code(length: int = REFERRAL_CODE_LENGTH) -> str:
    """Generate a random upper-case alphanumeric referral code."""
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(length))


def virtual_referral_code(owner_id: int, sequence: int) -> str:
    """
    Deterministic referral code for an owner's n-th virtual referral.

    Format: VIR<owner id>-<sequence>, e.g. VIR42-3
    """
    return f"{VIRTUAL_REFERRAL_CODE_PREFIX}{owner_id}-{sequence}"
