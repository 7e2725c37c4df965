# FILE: phylopath/regression.py
# ======================================================================================
# phylopath
# Phylogenetic regressions — continuous GLS and binary PGLMM
# --------------------------------------------------------------------------------------
# What this is
# ------------
# The two regression engines the path analysis dispatches to:
#
#   • fit_pgls            generalized least squares with a phylogenetic correlation
#                         structure (Pagel's lambda, Brownian motion, ...). The
#                         structure parameter is estimated by maximizing the
#                         profile (RE)ML log-likelihood; coefficients come from a
#                         statsmodels GLS at the estimate.
#   • fit_binary_pglmm    logistic phylogenetic GLMM fitted by penalized
#                         quasi-likelihood (Ives & Garland 2010), for 0/1 outcomes.
#
# and the dispatcher `fit_phylo_regression`, which looks at the dependent
# variable: text/categorical columns must have exactly two values and go to the
# PGLMM, everything else goes to GLS.
#
# GLS fitting states
# ------------------
#   NORMAL  → bounded search over the full admissible parameter range
#   BOUNDED → grid over [0, 1] followed by a local refine
# A fit moves from NORMAL to BOUNDED once, when NORMAL does not converge; if
# BOUNDED does not converge either, ConvergenceError is raised.
#
# Result contract
# ---------------
# Both result types expose params / bse / pvalues / conf_int(alpha) /
# p_value(term) / phylo_param (lambda, NaN for parameterless structures, s2
# for the PGLMM).
# ======================================================================================

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import linalg, optimize, stats
from scipy.special import expit

from .correlation import CorFun, CorStruct, resolve_cor_struct
from .errors import ConvergenceError, DataShapeError
from .tree import PhyloTree
from .utils.logging_utils import get_logger

log = get_logger("phylopath.regression")

INTERCEPT = "(Intercept)"


# --------------------------------------------------------------------------------------
# Data preparation
# --------------------------------------------------------------------------------------

def is_categorical(series: pd.Series) -> bool:
    """Text, categorical and object columns are treated as (binary) factors."""
    return not (pd.api.types.is_numeric_dtype(series) or pd.api.types.is_bool_dtype(series))


def binary_recode(series: pd.Series, variable: str, formula: Optional[str] = None) -> pd.Series:
    """
    Recode a two-valued factor to 0/1 (levels sorted, first level → 0).

    Raises DataShapeError for any other number of distinct non-missing values.
    """
    levels = sorted(series.dropna().unique().tolist(), key=str)
    if len(levels) != 2:
        raise DataShapeError(variable, len(levels), formula)
    return series.map({levels[0]: 0.0, levels[1]: 1.0}).astype(float)


def design_matrix(
    data: pd.DataFrame,
    dependent: str,
    predictors: Sequence[str],
    formula: Optional[str] = None,
) -> Tuple[pd.Series, pd.DataFrame, bool]:
    """
    Build (y, X, is_binary) for `dependent ~ predictors`. X carries an
    intercept column; factor predictors enter as 0/1 dummies.
    """
    y_raw = data[dependent]
    binary = is_categorical(y_raw)
    y = binary_recode(y_raw, dependent, formula) if binary else y_raw.astype(float)
    cols: Dict[str, pd.Series] = {INTERCEPT: pd.Series(1.0, index=data.index)}
    for p in predictors:
        col = data[p]
        cols[p] = binary_recode(col, p, formula) if is_categorical(col) else col.astype(float)
    X = pd.DataFrame(cols, index=data.index)
    return y, X, binary


def check_full_rank(X: np.ndarray) -> None:
    """Collinear predictors make the coefficients unidentifiable."""
    p = X.shape[1]
    rank = int(np.linalg.matrix_rank(X))
    if rank < p:
        raise np.linalg.LinAlgError(f"design matrix is singular (rank {rank} < {p})")


# --------------------------------------------------------------------------------------
# Phylogenetic GLS
# --------------------------------------------------------------------------------------

class FitState(enum.Enum):
    NORMAL = "normal"
    BOUNDED = "bounded"


_NEXT_STATE: Dict[FitState, Optional[FitState]] = {
    FitState.NORMAL: FitState.BOUNDED,
    FitState.BOUNDED: None,
}


@dataclass
class _Attempt:
    state: FitState
    converged: bool
    value: Optional[float]
    loglik: float
    message: str = ""


def profile_loglik(y: np.ndarray, X: np.ndarray, V: np.ndarray, method: str = "REML") -> float:
    """
    Profile log-likelihood of a GLS model with residual correlation V
    (error variance profiled out). Returns -inf when V is not positive definite.
    """
    n, p = X.shape
    try:
        L = linalg.cholesky(V, lower=True)
    except linalg.LinAlgError:
        return -math.inf
    Xs = linalg.solve_triangular(L, X, lower=True)
    ys = linalg.solve_triangular(L, y, lower=True)
    beta, *_ = np.linalg.lstsq(Xs, ys, rcond=None)
    resid = ys - Xs @ beta
    rss = float(resid @ resid)
    if rss <= 0:
        return -math.inf
    logdet_v = 2.0 * float(np.log(np.diag(L)).sum())
    if method == "ML":
        return -0.5 * n * (math.log(2 * math.pi) + math.log(rss / n) + 1.0) - 0.5 * logdet_v
    dof = n - p
    sign, logdet_xtx = np.linalg.slogdet(Xs.T @ Xs)
    if sign <= 0:
        return -math.inf
    return (
        -0.5 * dof * (math.log(2 * math.pi) + math.log(rss / dof) + 1.0)
        - 0.5 * logdet_v
        - 0.5 * float(logdet_xtx)
    )


def _attempt_fit(
    state: FitState,
    y: np.ndarray,
    X: np.ndarray,
    C: np.ndarray,
    cor: CorStruct,
    method: str,
) -> _Attempt:
    def ll(v: Optional[float]) -> float:
        return profile_loglik(y, X, cor.matrix(C, v), method)

    if not cor.estimated:
        value = cor.value
        fit_ll = ll(value)
        ok = math.isfinite(fit_ll)
        return _Attempt(state, ok, value, fit_ll, "" if ok else "correlation matrix is not positive definite")

    def objective(v: float) -> float:
        out = ll(v)
        return -out if math.isfinite(out) else 1e300

    lo, hi = cor.bounds(C)
    if state is FitState.NORMAL:
        res = optimize.minimize_scalar(objective, bounds=(lo, hi), method="bounded", options={"xatol": 1e-6})
        value = float(res.x)
        fit_ll = ll(value)
        ok = bool(res.success) and math.isfinite(fit_ll)
        return _Attempt(state, ok, value, fit_ll, "" if ok else f"optimizer did not converge ({res.message})")

    grid = [g for g in np.linspace(0.0, 1.0, 11) if lo <= g <= hi]
    scores = [ll(g) for g in grid]
    finite = [(s, g) for s, g in zip(scores, grid) if math.isfinite(s)]
    if not finite:
        return _Attempt(state, False, None, -math.inf, "no admissible parameter value in [0, 1]")
    _, start = max(finite)
    a, b = max(lo, start - 0.1), min(hi, 1.0, start + 0.1)
    res = optimize.minimize_scalar(objective, bounds=(a, b), method="bounded", options={"xatol": 1e-6})
    value = float(res.x)
    fit_ll = ll(value)
    if not math.isfinite(fit_ll):
        value, fit_ll = float(start), ll(start)
    return _Attempt(state, math.isfinite(fit_ll), value, fit_ll)


@dataclass
class PGLSResult:
    """Continuous phylogenetic regression fitted by GLS."""

    formula: str
    results: Any = field(repr=False)
    cor_struct: CorStruct
    phylo_param: float
    loglik: float
    method: str
    state: FitState

    @property
    def params(self) -> pd.Series:
        return self.results.params

    @property
    def bse(self) -> pd.Series:
        return self.results.bse

    @property
    def pvalues(self) -> pd.Series:
        return self.results.pvalues

    @property
    def nobs(self) -> int:
        return int(self.results.nobs)

    def conf_int(self, alpha: float = 0.05) -> pd.DataFrame:
        ci = self.results.conf_int(alpha=alpha)
        ci.columns = ["lower", "upper"]
        return ci

    def p_value(self, term: str) -> float:
        return float(self.pvalues[term])


def fit_pgls(
    y: pd.Series,
    X: pd.DataFrame,
    C: np.ndarray,
    cor_struct: CorStruct,
    method: str = "REML",
    formula: str = "",
) -> PGLSResult:
    """
    Fit `y ~ X` by GLS with residual correlation `cor_struct.matrix(C, value)`.

    Parameters
    ----------
    y, X : aligned response and design matrix (X includes the intercept)
    C : phylogenetic correlation matrix in the row order of X
    cor_struct : correlation structure; its parameter is estimated unless fixed
    method : "REML" (default) or "ML" for the parameter search
    """
    method = method.upper()
    if method not in ("REML", "ML"):
        raise ValueError("method must be 'REML' or 'ML'.")
    n, p = X.shape
    if n <= p:
        raise ValueError(f"Only {n} observations for {p} coefficients.")
    yv = y.to_numpy(dtype=float)
    Xv = X.to_numpy(dtype=float)
    check_full_rank(Xv)

    state: Optional[FitState] = FitState.NORMAL
    attempt: Optional[_Attempt] = None
    while state is not None:
        attempt = _attempt_fit(state, yv, Xv, C, cor_struct, method)
        if attempt.converged:
            break
        log.info("GLS fit of '%s' failed in %s state: %s", formula, state.value, attempt.message)
        state = _NEXT_STATE[state]
    if attempt is None or not attempt.converged:
        raise ConvergenceError(
            f"GLS did not converge with normal or bounded parameter search: {attempt.message if attempt else ''}"
        )

    V = cor_struct.matrix(C, attempt.value)
    results = sm.GLS(y.astype(float), X.astype(float), sigma=V).fit()
    phylo = float(attempt.value) if cor_struct.n_params else float("nan")
    log.debug("GLS %s: %s=%.4g (%s state)", formula, cor_struct.name, phylo, attempt.state.value)
    return PGLSResult(
        formula=formula,
        results=results,
        cor_struct=cor_struct,
        phylo_param=phylo,
        loglik=attempt.loglik,
        method=method,
        state=attempt.state,
    )


# --------------------------------------------------------------------------------------
# Binary phylogenetic GLMM (PQL)
# --------------------------------------------------------------------------------------

@dataclass
class PGLMMResult:
    """Logistic phylogenetic GLMM; `s2` is the phylogenetic variance."""

    formula: str
    params: pd.Series
    bse: pd.Series
    cov_params: pd.DataFrame
    s2: float
    converged: bool
    iterations: int
    nobs: int

    @property
    def zvalues(self) -> pd.Series:
        return self.params / self.bse

    @property
    def pvalues(self) -> pd.Series:
        return pd.Series(2.0 * stats.norm.sf(np.abs(self.zvalues)), index=self.params.index)

    @property
    def phylo_param(self) -> float:
        return self.s2

    def conf_int(self, alpha: float = 0.05) -> pd.DataFrame:
        z = stats.norm.ppf(1 - alpha / 2)
        return pd.DataFrame(
            {"lower": self.params - z * self.bse, "upper": self.params + z * self.bse}
        )

    def p_value(self, term: str) -> float:
        return float(self.pvalues[term])


def _pglmm_reml(par: np.ndarray, invW: np.ndarray, H: np.ndarray, Vphy: np.ndarray, X: np.ndarray) -> float:
    s2 = abs(float(par[0]))
    V = invW + s2 * Vphy
    if not np.all(np.isfinite(V)) or np.linalg.svd(V, compute_uv=False).min() <= 1e-10:
        return 1e10
    iV = np.linalg.inv(V)
    denom = X.T @ iV @ X
    if np.linalg.svd(denom, compute_uv=False).min() <= 1e-10:
        return 1e10
    B = np.linalg.solve(denom, X.T @ iV @ H)
    r = H - X @ B
    _, logdet_v = np.linalg.slogdet(V)
    _, logdet_d = np.linalg.slogdet(denom)
    return 0.5 * (logdet_v + logdet_d + (r.T @ iV @ r).item())


def fit_binary_pglmm(
    y: pd.Series,
    X: pd.DataFrame,
    vcv: np.ndarray,
    formula: str = "",
    s2_init: float = 0.1,
    tol_pql: float = 1e-6,
    maxit_pql: int = 200,
    maxit_reml: int = 100,
) -> PGLMMResult:
    """
    Logistic regression with a phylogenetic random effect, b ~ N(0, s2 * Vphy).

    `vcv` is the raw phylogenetic covariance in the row order of X; it is
    rescaled to unit maximum and unit determinant before fitting.
    """
    n, p = X.shape
    Xv = X.to_numpy(dtype=float)
    check_full_rank(Xv)
    yv = y.to_numpy(dtype=float).reshape(n, 1)
    Vphy = np.asarray(vcv, dtype=float) / np.max(vcv)
    _, logdet = np.linalg.slogdet(Vphy)
    Vphy = Vphy / math.exp(logdet / n)

    B = np.asarray(sm.GLM(yv.ravel(), Xv, family=sm.families.Binomial()).fit().params).reshape(p, 1)
    s2 = float(s2_init)
    b = np.zeros((n, 1))

    def _weights(mu: np.ndarray) -> np.ndarray:
        return np.clip(mu * (1.0 - mu), 1e-10, None)

    mu = expit(Xv @ B)
    est_s2, est_B = s2, B.copy()
    old_s2, old_B = 1e6, np.full((p, 1), 1e6)
    iteration = 0
    while (
        ((est_s2 - old_s2) ** 2 > tol_pql ** 2 or float(((est_B - old_B) ** 2).sum()) / p > tol_pql ** 2)
        and iteration <= maxit_pql
    ):
        iteration += 1
        old_s2, old_B = est_s2, est_B.copy()
        Cd = s2 * Vphy
        est_B_m, old_B_m = B.copy(), np.full((p, 1), 10.0)
        it_m = 0
        while float(((est_B_m - old_B_m) ** 2).sum()) > tol_pql ** 2 and it_m <= maxit_pql:
            it_m += 1
            old_B_m = est_B_m
            w = _weights(mu)
            invW = np.diag(1.0 / w.ravel())
            invV = np.linalg.inv(invW + Cd)
            Z = Xv @ B + b + (yv - mu) / w
            B = np.linalg.solve(Xv.T @ invV @ Xv, Xv.T @ invV @ Z)
            b = Cd @ invV @ (Z - Xv @ B)
            mu = expit(Xv @ B + b)
            est_B_m = B
        H = Z - Xv @ B
        opt = optimize.minimize(
            _pglmm_reml, x0=np.array([s2]), args=(invW, H, Vphy, Xv),
            method="Nelder-Mead", options={"maxiter": maxit_reml},
        )
        s2 = abs(float(opt.x[0]))
        est_s2, est_B = s2, B.copy()

    w = _weights(mu)
    invV = np.linalg.inv(np.diag(1.0 / w.ravel()) + s2 * Vphy)
    Z = Xv @ B + b + (yv - mu) / w
    denom = Xv.T @ invV @ Xv
    B = np.linalg.solve(denom, Xv.T @ invV @ Z)
    cov = np.linalg.inv(denom)
    names = list(X.columns)
    converged = iteration <= maxit_pql
    if not converged:
        log.warning("Binary PGLMM for '%s' reached the PQL iteration limit.", formula)
    return PGLMMResult(
        formula=formula,
        params=pd.Series(B.ravel(), index=names),
        bse=pd.Series(np.sqrt(np.diag(cov)), index=names),
        cov_params=pd.DataFrame(cov, index=names, columns=names),
        s2=s2,
        converged=converged,
        iterations=iteration,
        nobs=n,
    )


# --------------------------------------------------------------------------------------
# Dispatch
# --------------------------------------------------------------------------------------

RegressionResult = Union[PGLSResult, PGLMMResult]


def fit_phylo_regression(
    data: pd.DataFrame,
    dependent: str,
    predictors: Sequence[str],
    tree: PhyloTree,
    cor_fun: CorFun = None,
    method: str = "REML",
    formula: Optional[str] = None,
) -> RegressionResult:
    """
    Fit `dependent ~ predictors` for the species in `data.index`, choosing the
    binary PGLMM for factor outcomes and phylogenetic GLS otherwise.
    """
    formula = formula or f"{dependent} ~ {' + '.join(predictors)}"
    y, X, binary = design_matrix(data, dependent, predictors, formula)
    species: List[str] = [str(s) for s in data.index]
    if binary:
        return fit_binary_pglmm(y, X, tree.vcv(order=species).to_numpy(), formula=formula)
    C = tree.vcv(order=species, corr=True).to_numpy()
    return fit_pgls(y, X, C, resolve_cor_struct(cor_fun), method=method, formula=formula)
