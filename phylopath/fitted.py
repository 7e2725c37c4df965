"""
Estimating path coefficients — best, chosen and averaged models.

A FittedDAG is a model with standardized path coefficients: every child is
regressed on all of its parents (phylogenetic GLS, or the binary PGLMM for
factor outcomes) after scaling the numeric variables to mean 0 and sd 1.
Coefficient, standard error and confidence bounds are stored as matrices of
the adjacency's shape, 0 where there is no edge.

Averaging combines several FittedDAGs weighted by model evidence:

- "conditional": each edge is averaged over the models that contain it
- "full":        models without the edge contribute coefficient 0 and SE 0,
                 shrinking inconsistently supported edges towards zero

An averaged model may contain edges in both directions between two
variables; that is an expected outcome, not an error.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.preprocessing import StandardScaler

from .correlation import CorFun
from .dag import DAG, format_dag
from .errors import DataShapeError, FittingError, ModelSetError
from .regression import fit_phylo_regression, is_categorical
from .tree import PhyloTree
from .utils.logging_utils import get_logger

log = get_logger("phylopath.fitted")

AVERAGE_METHODS = ("conditional", "full")


@dataclass
class FittedDAG:
    coef: pd.DataFrame
    se: pd.DataFrame
    lower: pd.DataFrame
    upper: pd.DataFrame
    adjacency: DAG

    @property
    def variables(self) -> List[str]:
        return self.adjacency.variables

    def is_acyclic(self) -> bool:
        return self.adjacency.is_acyclic()

    def to_frame(self) -> pd.DataFrame:
        """Long table: one row per edge with coef, se, lower and upper."""
        rows = [
            {
                "from": p,
                "to": c,
                "coef": float(self.coef.loc[p, c]),
                "se": float(self.se.loc[p, c]),
                "lower": float(self.lower.loc[p, c]),
                "upper": float(self.upper.loc[p, c]),
            }
            for p, c in self.adjacency.edges()
        ]
        return pd.DataFrame(rows, columns=["from", "to", "coef", "se", "lower", "upper"])

    def __repr__(self) -> str:
        return "Fitted path model\n" + format_dag(self.adjacency, weights=self.coef)


def standardize(data: pd.DataFrame) -> pd.DataFrame:
    """Scale numeric columns to mean 0 / sd 1; factor columns are left as they are."""
    out = data.copy()
    numeric = [c for c in out.columns if not is_categorical(out[c])]
    if numeric:
        out[numeric] = StandardScaler().fit_transform(out[numeric].astype(float))
    return out


def est_dag(
    dag: DAG,
    data: pd.DataFrame,
    cor_fun: CorFun,
    tree: PhyloTree,
    method: str = "REML",
    alpha: float = 0.05,
) -> FittedDAG:
    """Fit one regression per child on its parents and collect standardized paths."""
    variables = dag.variables
    std = standardize(data.loc[:, variables])
    zeros = pd.DataFrame(0.0, index=variables, columns=variables)
    coef, se, lower, upper = zeros.copy(), zeros.copy(), zeros.copy(), zeros.copy()

    for child in variables:
        parents = dag.parents(child)
        if not parents:
            continue
        formula = f"{child} ~ {' + '.join(parents)}"
        try:
            fit = fit_phylo_regression(std, child, parents, tree, cor_fun, method=method, formula=formula)
        except DataShapeError:
            raise
        except Exception as exc:
            raise FittingError(formula, exc) from exc
        ci = fit.conf_int(alpha)
        for p in parents:
            coef.loc[p, child] = float(fit.params[p])
            se.loc[p, child] = float(fit.bse[p])
            lower.loc[p, child] = float(ci.loc[p, "lower"])
            upper.loc[p, child] = float(ci.loc[p, "upper"])
        log.debug("Estimated paths into %s: %s", child, formula)
    return FittedDAG(coef=coef, se=se, lower=lower, upper=upper, adjacency=dag)


def best(result) -> FittedDAG:
    """Estimate the model with the lowest CICc."""
    top = result.summary()["model"].iloc[0]
    return choice(result, top)


def choice(result, which: Union[str, int]) -> FittedDAG:
    """Estimate a model picked by name or by (0-based) position in the model set."""
    names = list(result.models)
    if isinstance(which, (int, np.integer)) and not isinstance(which, bool):
        if not 0 <= int(which) < len(names):
            raise ModelSetError(f"Model index {which} is out of range for {len(names)} models.")
        name = names[int(which)]
    else:
        name = str(which)
        if name not in result.models:
            raise ModelSetError(f"No model named '{name}'; available models: {names}")
    return est_dag(result.models[name], result.data, result.cor_fun, result.tree, method=result.method)


def average(result, cut_off: float = 2.0, method: str = "conditional", alpha: float = 0.05) -> FittedDAG:
    """
    Average all models with delta CICc below `cut_off` (use float("inf") for
    all models), weighted by their CICc weights.
    """
    if method not in AVERAGE_METHODS:
        raise ValueError(f"method must be one of {AVERAGE_METHODS}, got {method!r}.")
    table = result.summary()
    selected = table[table["delta_CICc"] < cut_off]
    if selected.empty:
        raise ModelSetError(f"No models have delta CICc below the cut-off of {cut_off}.")
    log.info("Averaging %d models: %s", len(selected), ", ".join(selected["model"]))
    fitted = [
        est_dag(result.models[m], result.data, result.cor_fun, result.tree, method=result.method, alpha=alpha)
        for m in selected["model"]
    ]
    return average_dags(fitted, selected["w"].to_numpy(dtype=float), method=method, alpha=alpha)


def average_dags(
    fitted: Sequence[FittedDAG],
    weights: Optional[Sequence[float]] = None,
    method: str = "conditional",
    alpha: float = 0.05,
) -> FittedDAG:
    """Weighted average of coefficients and standard errors over fitted models."""
    if method not in AVERAGE_METHODS:
        raise ValueError(f"method must be one of {AVERAGE_METHODS}, got {method!r}.")
    if not fitted:
        raise ModelSetError("Nothing to average.")
    w = np.ones(len(fitted)) if weights is None else np.asarray(weights, dtype=float)
    if w.shape != (len(fitted),) or np.any(w < 0):
        raise ValueError("weights must be one non-negative number per fitted model.")

    variables: List[str] = []
    for f in fitted:
        variables += [v for v in f.variables if v not in variables]

    def stack(attr: str) -> np.ndarray:
        return np.stack([
            getattr(f, attr).reindex(index=variables, columns=variables, fill_value=0.0).to_numpy(dtype=float)
            for f in fitted
        ])

    present = np.stack([
        f.adjacency.reindex(variables).adjacency.to_numpy() == 1 for f in fitted
    ])
    coefs, ses = stack("coef"), stack("se")

    if method == "full":
        W = np.broadcast_to(w[:, None, None], present.shape)
    else:
        W = w[:, None, None] * present
    denom = W.sum(axis=0)
    has_edge = present.any(axis=0)
    with np.errstate(invalid="ignore", divide="ignore"):
        coef = np.where(has_edge & (denom > 0), (W * coefs).sum(axis=0) / denom, 0.0)
        se = np.where(has_edge & (denom > 0), (W * ses).sum(axis=0) / denom, 0.0)
    z = stats.norm.ppf(1 - alpha / 2)
    lower = np.where(has_edge, coef - z * se, 0.0)
    upper = np.where(has_edge, coef + z * se, 0.0)

    def frame(a: np.ndarray) -> pd.DataFrame:
        return pd.DataFrame(a, index=variables, columns=variables)

    adjacency = DAG.from_adjacency(frame(has_edge.astype(int)))
    if not adjacency.is_acyclic():
        log.info("The averaged model contains cycles; paths point both ways between some variables.")
    return FittedDAG(coef=frame(coef), se=frame(se), lower=frame(lower), upper=frame(upper), adjacency=adjacency)
