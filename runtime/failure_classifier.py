"""
Failure Classifier - Categorizes chapter render failures.

Classifies failure mode from the raised exception (or a bare error string)
so a failed chapter records why it failed. Nothing is retried automatically;
the classification tells operators whether a manual re-queue is worthwhile.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional, Union

from agents.render_client import RendererError

# Transient infrastructure - re-queue likely to succeed
RECOVERABLE_TYPES = {"timeout", "network"}


@dataclass
class FailureClassification:
    failure_type: str  # timeout | network | renderer_error | unknown
    severity: str      # recoverable | marginal
    reason: str

    @property
    def message(self) -> str:
        return self.reason

    @property
    def recoverable(self) -> bool:
        return self.severity == "recoverable"


def classify_render_failure(
    error: Optional[Union[BaseException, str]] = None,
) -> FailureClassification:
    """
    Classify a render failure.
    """
    if isinstance(error, RendererError):
        kind = error.kind or "renderer_error"
        return FailureClassification(
            failure_type=kind,
            severity="recoverable" if kind in RECOVERABLE_TYPES else "marginal",
            reason=str(error) or kind,
        )

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return FailureClassification(
            failure_type="timeout",
            severity="recoverable",
            reason=str(error) or "Render timed out",
        )

    if isinstance(error, ConnectionError):
        return FailureClassification(
            failure_type="network",
            severity="recoverable",
            reason=str(error) or "Connection error",
        )

    text = str(error) if error is not None else ""
    err_lower = text.lower()
    if "timeout" in err_lower or "timed out" in err_lower:
        return FailureClassification(
            failure_type="timeout",
            severity="recoverable",
            reason=text,
        )
    if "render failed" in err_lower or "stitch failed" in err_lower:
        return FailureClassification(
            failure_type="renderer_error",
            severity="marginal",
            reason=text,
        )

    return FailureClassification(
        failure_type="unknown",
        severity="marginal",
        reason=text or "Unknown render error",
    )
