"""Base exception for the rebellion engine."""


class RebellionError(Exception):
    """Structural error: the caller asked for something that cannot apply.

    Failed dice rolls are never errors; they are ordinary outcomes.
    """
    pass
