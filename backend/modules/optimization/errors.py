"""
modules/optimization/errors.py
-------------------------------
Error taxonomy for the optimization engine.

  ValidationError          -- malformed input, rejected before any stage runs
  InsufficientDataError    -- nothing left to optimize at some stage
  ExternalDependencyError  -- airport / geocoding lookup failure (recovered locally)
  ComputationError         -- internal inconsistency detected by a self-check

Every error carries a machine-readable ``code`` (ERROR_*), a message, and the
offending field and place/member identifiers where they apply.
"""

from __future__ import annotations

from typing import Optional


class OptimizationError(Exception):
    """Base class for every failure surfaced by the engine."""

    default_code = "ERROR_OPTIMIZATION"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        field: Optional[str] = None,
        ids: Optional[list[str]] = None,
        context: Optional[dict] = None,
    ) -> None:
        self.code = code or self.default_code
        self.message = message
        self.field = field
        self.ids = list(ids or [])
        self.context = dict(context or {})
        super().__init__(f"{self.code}: {message}")

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {
            "kind":    self.kind,
            "code":    self.code,
            "message": self.message,
            "field":   self.field,
            "ids":     self.ids,
        }


class ValidationError(OptimizationError):
    default_code = "ERROR_VALIDATION"


class InsufficientDataError(OptimizationError):
    default_code = "ERROR_INSUFFICIENT_DATA"


class ExternalDependencyError(OptimizationError):
    default_code = "ERROR_EXTERNAL_DEPENDENCY"


class ComputationError(OptimizationError):
    default_code = "ERROR_COMPUTATION"
