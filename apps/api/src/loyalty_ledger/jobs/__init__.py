"""Out-of-band housekeeping job entrypoints."""

__all__ = [
    "redemption_codes",
]
