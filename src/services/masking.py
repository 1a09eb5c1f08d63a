"""Masked hints for contact numbers and email addresses."""


def mask_contact(contact: str, visible_prefix: int = 2, visible_suffix: int = 2) -> str:
    """Mask a phone number, e.g. ``9876543210`` -> ``98******10``."""
    contact = (contact or "").strip()
    if len(contact) <= visible_prefix + visible_suffix:
        return "*" * len(contact)
    hidden = len(contact) - visible_prefix - visible_suffix
    return contact[:visible_prefix] + "*" * hidden + contact[-visible_suffix:]


def mask_email(email: str) -> str:
    """Mask the local part of an address, e.g. ``alice@example.com`` -> ``al***@example.com``."""
    email = (email or "").strip()
    local, sep, domain = email.partition("@")
    if not sep:
        return mask_contact(email)
    visible = 2 if len(local) > 2 else 1
    return local[:visible] + "*" * max(len(local) - visible, 1) + "@" + domain
