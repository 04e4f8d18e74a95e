"""
Error Kinds
===========

Exceptions raised by the covariance builder, the DGP variants, the OLS
estimator and the simulation runner.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class OLSSimError(Exception):
    """
    Base class for all olssim errors.

    The simulation runner fills in ``trial_id`` and ``params`` before
    re-raising, so a caller can tell which trial and configuration failed.
    """

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.trial_id: Optional[int] = None
        self.params: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        message = super().__str__()
        if self.trial_id is not None:
            message = f"{message} (trial {self.trial_id})"
        return message


class InvalidInputError(OLSSimError, ValueError):
    """Malformed configuration: dimension mismatch, bad scale or probability."""


class DistributionError(OLSSimError):
    """Covariance matrix cannot be factored (not positive semi-definite)."""


class EmptySampleError(OLSSimError):
    """A selection filter removed every row."""


class SingularDesignError(OLSSimError):
    """OLS design matrix is not of full column rank."""


__all__ = [
    "OLSSimError",
    "InvalidInputError",
    "DistributionError",
    "EmptySampleError",
    "SingularDesignError",
]
