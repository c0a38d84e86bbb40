# src/fastpenkf/enkf/errors.py
from __future__ import annotations
import numpy as np


class EnKFError(Exception):
    """Base class for errors raised by the analysis step."""


class InvalidArgumentError(EnKFError, ValueError):
    """Malformed scalar input, Ne < 2, non-positive alpha or non-PSD R."""


class ShapeMismatchError(EnKFError, ValueError):
    """Dimensions of T, HX, y and R are inconsistent."""


class SingularMatrixError(EnKFError, np.linalg.LinAlgError):
    """
    The gain system (C_HEHE + aC_DD) could not be solved.

    rcond is the LAPACK reciprocal condition estimate of the system
    (0.0 when the LU factorization hit an exactly zero pivot).
    """

    def __init__(self, message: str, rcond: float | None = None):
        super().__init__(message)
        self.rcond = rcond
