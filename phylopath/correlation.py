# FILE: phylopath/correlation.py
# ======================================================================================
# phylopath
# Correlation structures — how the tree enters a phylogenetic regression
# --------------------------------------------------------------------------------------
# A correlation structure turns the tree's phylogenetic correlation matrix
# (vcv rescaled to unit diagonal) into the residual correlation matrix used by
# generalized least squares. Structures may carry one parameter that is either
# estimated by the GLS fit or held fixed.
#
# Built-in structures
# -------------------
#   CorBrownian   pure Brownian motion; no parameter
#   CorPagel      Pagel's lambda: off-diagonals multiplied by lambda
#
# Custom structures subclass CorStruct and implement `matrix(C, value)` and,
# if they have a parameter, `bounds(C)`.
# ======================================================================================

from __future__ import annotations

from typing import Callable, Dict, Optional, Tuple, Type, Union

import numpy as np

# Upper limit for the lambda search when the tree places no constraint on it
# (e.g. a star tree, where lambda does not change the matrix).
LAMBDA_CAP = 1.5


class CorStruct:
    """
    Base correlation structure.

    Parameters
    ----------
    value : float, optional
        Starting (or fixed) parameter value.
    fixed : bool
        Hold `value` fixed instead of estimating it.
    """

    name = "base"
    n_params = 0
    default_value: Optional[float] = None

    def __init__(self, value: Optional[float] = None, fixed: bool = False) -> None:
        self.value = self.default_value if value is None else float(value)
        self.fixed = bool(fixed)
        if self.n_params and self.fixed and self.value is None:
            raise ValueError(f"{type(self).__name__}: a fixed structure needs a value.")

    @property
    def estimated(self) -> bool:
        return self.n_params > 0 and not self.fixed

    def matrix(self, C: np.ndarray, value: Optional[float] = None) -> np.ndarray:
        raise NotImplementedError

    def bounds(self, C: np.ndarray) -> Tuple[float, float]:
        """Admissible parameter interval for the given correlation matrix."""
        raise NotImplementedError

    def __repr__(self) -> str:
        if self.n_params == 0:
            return f"{type(self).__name__}()"
        return f"{type(self).__name__}(value={self.value}, fixed={self.fixed})"


class CorBrownian(CorStruct):
    """Brownian motion: residual correlation equals the phylogenetic correlation."""

    name = "brownian"

    def matrix(self, C: np.ndarray, value: Optional[float] = None) -> np.ndarray:
        return np.array(C, dtype=float, copy=True)


class CorPagel(CorStruct):
    """Pagel's lambda: scales all off-diagonal correlations by lambda."""

    name = "pagel"
    n_params = 1
    default_value = 1.0

    def matrix(self, C: np.ndarray, value: Optional[float] = None) -> np.ndarray:
        lam = self.value if value is None else float(value)
        C = np.asarray(C, dtype=float)
        out = C * lam
        np.fill_diagonal(out, np.diag(C))
        return out

    def bounds(self, C: np.ndarray) -> Tuple[float, float]:
        # lambda*C + (1 - lambda)*I stays positive definite while
        # lambda < 1 / (1 - min eigenvalue of C).
        mu_min = float(np.linalg.eigvalsh(np.asarray(C, dtype=float)).min())
        if mu_min >= 1.0 - 1e-12:
            return 0.0, LAMBDA_CAP
        return 0.0, min(LAMBDA_CAP, (1.0 / (1.0 - mu_min)) * (1.0 - 1e-6))


_REGISTRY: Dict[str, Type[CorStruct]] = {
    "brownian": CorBrownian,
    "bm": CorBrownian,
    "pagel": CorPagel,
    "lambda": CorPagel,
}

CorFun = Union[None, str, CorStruct, Type[CorStruct], Callable[[], CorStruct]]


def resolve_cor_struct(cor_fun: CorFun) -> CorStruct:
    """
    Accept a structure name, class, instance or zero-argument factory and
    return an instance. `None` gives the default (Pagel's lambda).
    """
    if cor_fun is None:
        return CorPagel()
    if isinstance(cor_fun, CorStruct):
        return cor_fun
    if isinstance(cor_fun, str):
        key = cor_fun.strip().lower()
        if key.startswith("cor"):
            key = key[3:]
        if key not in _REGISTRY:
            raise ValueError(
                f"Unknown correlation structure {cor_fun!r}; choose one of {sorted(set(_REGISTRY))}."
            )
        return _REGISTRY[key]()
    if callable(cor_fun):
        out = cor_fun()
        if not isinstance(out, CorStruct):
            raise TypeError("cor_fun must produce a CorStruct instance.")
        return out
    raise TypeError(f"Unsupported cor_fun: {cor_fun!r}")
