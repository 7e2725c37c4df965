# FILE: phylopath/core.py
# ======================================================================================
# phylopath
# Phylogenetic path analysis — model comparison engine
# --------------------------------------------------------------------------------------
# Pipeline
# --------
#   1) validate models / data / tree              (checks.check_models_data_tree)
#   2) resolve one causal order                   (given, or find_consensus_order)
#   3) derive each model's basis set              (basis_set.basis_set)
#   4) collect the DISTINCT statements over all models and fit each exactly once
#      (GLS or binary PGLMM; optionally on a joblib worker pool)
#   5) map fits back onto every model's basis set → per-model d-sep tables
#
# `summary()` then turns the d-sep tables into the ranking table (C, p, CICc,
# delta, l, w); it is recomputed on every call.
#
# Failure policy
# --------------
# Any statement that cannot be fitted aborts the run with FittingError naming
# the formula. Ranking needs every model's full basis set, so there are no
# partial results.
#
# Typical usage
# -------------
#   from phylopath import DAG, phylo_path
#
#   models = {"A": DAG("LS ~ BM", "NL ~ BM", "DD ~ NL"),
#             "B": DAG("LS ~ BM", "NL ~ LS", "DD ~ NL")}
#   res = phylo_path(models, data, tree)
#   print(res.summary())
#   best_model = res.best()
# ======================================================================================

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import pandas as pd
from joblib import Parallel, delayed

from .basis_set import DSepStatement, basis_set, find_consensus_order
from .checks import check_models_data_tree
from .correlation import CorFun, CorPagel, CorStruct, resolve_cor_struct
from .dag import DAG
from .errors import DataShapeError, FittingError, ModelSetError
from .regression import RegressionResult, fit_phylo_regression
from .stats import c_p, c_stat, cicc, rel_likelihood, weights
from .tree import PhyloTree
from .utils.logging_utils import get_logger

log = get_logger("phylopath.core")


@dataclass(frozen=True)
class PhylopathResult:
    """
    Outcome of `phylo_path`.

    Attributes
    ----------
    d_sep : dict
        Model name → DataFrame with one row per basis-set statement and columns
        `d_sep` (formula), `p`, `phylo` (phylogenetic parameter) and `model`
        (the fitted regression, shared between models).
    models : dict of DAG
    data : pruned trait table actually used (rows in tree tip order)
    tree : pruned tree actually used
    cor_fun : correlation structure used for continuous fits
    order : causal order used to orient the d-sep statements
    """

    d_sep: Dict[str, pd.DataFrame]
    models: Dict[str, DAG]
    data: pd.DataFrame
    tree: PhyloTree
    cor_fun: CorStruct
    order: List[str]
    method: str = "REML"
    dropped_rows: List[str] = field(default_factory=list)
    pruned_tips: List[str] = field(default_factory=list)

    @property
    def n_fits(self) -> int:
        """Number of distinct regressions that were fitted."""
        return len({id(m) for table in self.d_sep.values() for m in table["model"]})

    def summary(self) -> pd.DataFrame:
        return summary(self)

    def best(self):
        from .fitted import best
        return best(self)

    def choice(self, which: Union[str, int]):
        from .fitted import choice
        return choice(self, which)

    def average(self, cut_off: float = 2.0, method: str = "conditional"):
        from .fitted import average
        return average(self, cut_off=cut_off, method=method)

    def __repr__(self) -> str:
        return (
            "A phylogenetic path analysis\n"
            f"  variables: {', '.join(self.order)}\n"
            f"  models:    {', '.join(self.models)}\n"
            f"  species:   {len(self.data)}\n"
            f"  {self.n_fits} phylogenetic regressions ({type(self.cor_fun).__name__})"
        )


# --------------------------------------------------------------------------------------
# Fitting
# --------------------------------------------------------------------------------------

def _fit_statement(
    statement: DSepStatement,
    data: pd.DataFrame,
    tree: PhyloTree,
    cor: CorStruct,
    gls_kwargs: Mapping[str, Any],
) -> RegressionResult:
    try:
        return fit_phylo_regression(
            data,
            statement.dependent,
            statement.predictors,
            tree,
            cor,
            formula=statement.formula,
            **gls_kwargs,
        )
    except DataShapeError:
        raise
    except Exception as exc:
        raise FittingError(statement.formula, exc) from exc


def _n_jobs(n_tasks: int) -> int:
    return max(1, min((os.cpu_count() or 2) - 1, n_tasks))


def fit_statements(
    statements: Sequence[DSepStatement],
    data: pd.DataFrame,
    tree: PhyloTree,
    cor: CorStruct,
    parallel: Union[None, bool, str] = None,
    **gls_kwargs: Any,
) -> List[RegressionResult]:
    """
    Fit each statement once, in input order. `parallel` selects a joblib
    backend ("loky", "threading", ...; True for the default); results are
    identical to the sequential path.
    """
    if not parallel or len(statements) <= 1:
        return [_fit_statement(s, data, tree, cor, gls_kwargs) for s in statements]
    backend = None if parallel is True else str(parallel)
    n_jobs = _n_jobs(len(statements))
    log.info("Fitting %d regressions on %d workers (%s)", len(statements), n_jobs, backend or "default")
    return Parallel(n_jobs=n_jobs, backend=backend)(
        delayed(_fit_statement)(s, data, tree, cor, gls_kwargs) for s in statements
    )


def phylo_path(
    models: Mapping[str, DAG],
    data: pd.DataFrame,
    tree: PhyloTree,
    cor_fun: CorFun = CorPagel,
    order: Optional[Sequence[str]] = None,
    parallel: Union[None, bool, str] = None,
    na_rm: bool = True,
    **gls_kwargs: Any,
) -> PhylopathResult:
    """
    Compare causal models in a phylogenetic context.

    Parameters
    ----------
    models : mapping of name -> DAG
        Candidate models, all over the same variables.
    data : DataFrame
        One row per species (index = species names, matching tree tips).
        Binary variables must be text/categorical columns.
    tree : PhyloTree
    cor_fun : correlation structure (class, instance or name); default Pagel's lambda.
    order : causal order of the variables; derived from the models if omitted.
    parallel : joblib backend for the regression fits, None for sequential.
    na_rm : drop rows with missing values (with a message) instead of failing.
    **gls_kwargs : passed to the GLS fit (e.g. ``method="ML"``).
    """
    cor = resolve_cor_struct(cor_fun)
    checked = check_models_data_tree(models, data, tree, na_rm=na_rm)
    models = checked.models
    variables = next(iter(models.values())).variables

    if order is None:
        order = find_consensus_order(models)
    else:
        order = [str(v) for v in order]
        unknown = [v for v in order if v not in variables]
        if unknown:
            raise ModelSetError(f"Causal order mentions unknown variables: {unknown}")

    statements = {name: basis_set(dag, order) for name, dag in models.items()}
    distinct = list(dict.fromkeys(s for sts in statements.values() for s in sts))
    log.info(
        "%d models, %d d-separation statements, %d distinct regressions",
        len(models), sum(len(s) for s in statements.values()), len(distinct),
    )

    fits = fit_statements(distinct, checked.data, checked.tree, cor, parallel=parallel, **gls_kwargs)
    fitted = dict(zip(distinct, fits))

    d_sep = {
        name: pd.DataFrame(
            {
                "d_sep": [s.formula for s in sts],
                "p": [fitted[s].p_value(s.independent) for s in sts],
                "phylo": [fitted[s].phylo_param for s in sts],
                "model": [fitted[s] for s in sts],
            },
            columns=["d_sep", "p", "phylo", "model"],
        )
        for name, sts in statements.items()
    }
    return PhylopathResult(
        d_sep=d_sep,
        models=models,
        data=checked.data,
        tree=checked.tree,
        cor_fun=cor,
        order=list(order),
        method=str(gls_kwargs.get("method", "REML")),
        dropped_rows=checked.dropped_rows,
        pruned_tips=checked.pruned_tips,
    )


# --------------------------------------------------------------------------------------
# Ranking
# --------------------------------------------------------------------------------------

def summary(result: PhylopathResult) -> pd.DataFrame:
    """
    Ranking table, one row per model, sorted by CICc (ties keep model order):
    model, k, q, C, p, CICc, delta_CICc, l, w.
    """
    n = len(result.data)
    rows = []
    for name, dag in result.models.items():
        table = result.d_sep[name]
        k = len(table)
        q = len(dag.variables) + dag.n_edges
        C = c_stat(table["p"].to_numpy(dtype=float))
        rows.append({"model": name, "k": k, "q": q, "C": C, "p": c_p(C, k), "CICc": cicc(C, q, n)})
    out = pd.DataFrame(rows, columns=["model", "k", "q", "C", "p", "CICc"])
    out = out.sort_values("CICc", kind="mergesort").reset_index(drop=True)
    out["delta_CICc"] = out["CICc"] - out["CICc"].iloc[0]
    out["l"] = rel_likelihood(out["delta_CICc"])
    out["w"] = weights(out["l"])
    return out
