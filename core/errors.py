"""Exceptions raised by the TOTP engine."""


class TotpError(Exception):
    """Base class for TOTP engine failures."""


class RandomnessUnavailable(TotpError):
    """The operating system's secure random source could not be read."""
