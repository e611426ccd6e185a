"""
Exception taxonomy for tree generation.

    ConfigurationError: malformed or inconsistent ParameterModel
    PresetLoadError:    a preset document could not be read or parsed
    GenerationFailure:  internal invariant violated while building/emitting

ConfigurationError and PresetLoadError are expected per-tree failures and are
caught by batch callers (see grove.forest). GenerationFailure means the
generator itself misbehaved; it is never retried.
"""


class GroveError(Exception):
    """Base class for all errors raised by grove."""


class ConfigurationError(GroveError, ValueError):
    """Raised when a ParameterModel is structurally invalid."""


class PresetLoadError(GroveError):
    """Raised when a named preset cannot be loaded."""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"Failed to load preset {name!r}: {reason}")
        self.name = name
        self.reason = reason


class GenerationFailure(GroveError, RuntimeError):
    """Raised when skeleton building or geometry emission breaks an invariant."""
