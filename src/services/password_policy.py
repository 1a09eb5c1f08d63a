"""Password policy validation."""

import re
from typing import Optional

from src.config import PasswordPolicy

# bcrypt rejects longer input
BCRYPT_MAX_BYTES = 72


def validate_password(password: Optional[str], policy: PasswordPolicy) -> Optional[str]:
    """Check a password against the configured policy.

    The policy regex is matched in ASCII mode, so ``\\d`` and ``\\w`` only
    accept ASCII characters.

    Args:
        password: Candidate password
        policy: Rules loaded at startup

    Returns:
        None if the password is acceptable, otherwise the error message
    """
    if password is None:
        return "Password is required"

    if not policy.min_length <= len(password) <= policy.max_length:
        return (
            f"Password must be between {policy.min_length} and "
            f"{policy.max_length} characters long."
        )

    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        return f"Password must not be longer than {BCRYPT_MAX_BYTES} bytes."

    if not re.search(policy.regex, password, re.ASCII):
        return policy.error_message

    return None
