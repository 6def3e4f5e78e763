"""Error taxonomy for the diagnostic flow.

Every error carries a user-facing message. The orchestrator catches these at
its public boundary and surfaces ``str(exc)`` as its error message.
"""


class DiagnosticError(Exception):
    """Base class for diagnostic flow errors."""


class BusinessRuleViolation(DiagnosticError):
    """An action was attempted out of sequence or without eligibility.

    ``redirect`` names the stage the flow moves to instead of holding the
    current one (e.g. a blocked window).
    """

    def __init__(self, message: str, redirect=None):
        super().__init__(message)
        self.redirect = redirect


class StoreError(DiagnosticError):
    """The persistence collaborator rejected a read or write."""


class InitializationError(DiagnosticError):
    """No cycle could be established for the session."""
