"""Retention exceptions."""


class RetentionError(Exception):
    """Base exception for retention enforcement."""
    pass


class StrategyRegistrationError(RetentionError, ValueError):
    """Raised when a strategy is registered with an empty name or a non-callable factory."""
    pass


class UnsupportedRetentionActionError(RetentionError):
    """Raised when a policy names an action the engine cannot execute."""

    def __init__(self, action: str):
        super().__init__(f'Unsupported data retention action "{action}"')
        self.action = action


class ResumeTokenMismatchError(RetentionError):
    """Raised when an approval names a token other than the active gate's."""
    pass
