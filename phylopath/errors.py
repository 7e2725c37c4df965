"""
Exception taxonomy for phylopath.

Everything raised on purpose by the package derives from PhylopathError so
callers can catch the whole family in one place. Input problems additionally
derive from ValueError.
"""
from __future__ import annotations

from typing import Optional


class PhylopathError(Exception):
    """Base class for all phylopath errors."""


class ValidationError(PhylopathError, ValueError):
    """Data, tree or model input that cannot be analysed as given."""


class ModelSetError(ValidationError):
    """Malformed or inconsistent model sets, or an unknown model selection."""


class DataShapeError(PhylopathError, ValueError):
    """A non-numeric variable that does not have exactly two distinct values."""

    def __init__(self, variable: str, n_levels: int, formula: Optional[str] = None) -> None:
        self.variable = variable
        self.n_levels = int(n_levels)
        self.formula = formula
        if self.n_levels > 2:
            reason = f"it has too many categories ({self.n_levels} found)"
        else:
            reason = f"it has only one category ({self.n_levels} found)"
        msg = (
            f"Variable '{variable}' is recognized as non-numeric, but does not have "
            f"exactly two distinct values: {reason}."
        )
        if formula:
            msg += f" Offending d-separation statement: {formula}"
        super().__init__(msg)


class ConvergenceError(PhylopathError):
    """Both the normal and the bounded GLS fitting attempts failed."""


class FittingError(PhylopathError):
    """A regression required by the analysis could not be fitted."""

    def __init__(self, formula: str, cause: BaseException | str) -> None:
        self.formula = formula
        self.cause = cause
        super().__init__(
            f"Fitting the following model:\n    {formula}\nproduced this error:\n    {cause}"
        )
