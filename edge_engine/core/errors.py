"""Exception taxonomy for the engine.

Numeric edge cases (empty windows, zero variance, zero denominators) never
raise; they degrade to documented sentinel values.  Exceptions are reserved
for calls that are malformed at the boundary, and for simulations that were
asked to stop.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every error raised by the engine."""


class InvalidInputError(EngineError, ValueError):
    """A public call received malformed input (NaN stake, p outside [0, 1], ...).

    Subclasses :class:`ValueError` so callers that already guard numeric
    input with ``except ValueError`` keep working.
    """


class SimulationCancelled(EngineError):
    """A Monte Carlo run hit its timeout or its cancel token was set."""

    def __init__(self, message: str, completed: int = 0, requested: int = 0):
        super().__init__(message)
        self.completed = completed
        self.requested = requested
