"""Exceptions raised by the partial analysis core."""


class InvalidParametersError(ValueError):
    """
    Raised when analysis parameters are structurally invalid.

    Always raised before any frame or partial is processed, so no output
    structure is ever left half-built.
    """
