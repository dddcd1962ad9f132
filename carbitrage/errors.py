"""
Error taxonomy shared by the scoring, gating, orchestration and cursor code.

Only InputMissing and lock plumbing failures escape a "run once" call;
the rest are folded into the returned StepResult.
"""


class CarbitrageError(Exception):
    """Base class for every domain error raised by this package."""


class InputMissing(CarbitrageError):
    """A required identifier or field is absent."""

    def __init__(self, field, entity=None):
        self.field = field
        self.entity = entity
        where = f" on {entity}" if entity else ''
        super().__init__(f"{field} is required{where}")


class NoMatch(CarbitrageError):
    """No fingerprint or hunt matches — counted as skipped."""


class GateRejected(CarbitrageError):
    """A candidate failed one or more hard gates."""

    def __init__(self, reasons):
        self.reasons = list(reasons)
        super().__init__(', '.join(self.reasons))


class StepFailure(CarbitrageError):
    """A pipeline step handler failed."""

    def __init__(self, step, message):
        self.step = step
        super().__init__(f"{step}: {message}")


class LockContention(CarbitrageError):
    """Another invocation holds the lock."""

    def __init__(self, name, code='LOCKED'):
        self.name = name
        self.code = code
        super().__init__(f"Lock '{name}' is held ({code})")


class TransientError(CarbitrageError):
    """A supplier or store call failed; the affected unit is skipped."""
