"""Honeypot check for automated submissions."""


def is_likely_bot(trap_value: str | None) -> bool:
    """Return True if the hidden ``website`` trap field was filled in."""
    return bool(trap_value and trap_value.strip())
