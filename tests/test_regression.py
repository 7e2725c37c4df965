from __future__ import annotations

import math

import numpy as np
import pandas as pd
import pytest
import statsmodels.api as sm

from phylopath.correlation import CorBrownian, CorPagel
from phylopath.errors import ConvergenceError, DataShapeError
from phylopath import regression
from phylopath.regression import (
    INTERCEPT,
    FitState,
    PGLMMResult,
    PGLSResult,
    binary_recode,
    design_matrix,
    fit_binary_pglmm,
    fit_phylo_regression,
    profile_loglik,
)


def test_gls_on_star_tree_matches_ols(chain_data, star):
    fit = fit_phylo_regression(chain_data, "Y", ["X"], star, CorBrownian)
    assert isinstance(fit, PGLSResult)
    ols = sm.OLS(chain_data["Y"], sm.add_constant(chain_data[["X"]])).fit()
    assert fit.params["X"] == pytest.approx(ols.params["X"])
    assert fit.bse["X"] == pytest.approx(ols.bse["X"])
    assert fit.p_value("X") == pytest.approx(ols.pvalues["X"])
    assert math.isnan(fit.phylo_param)
    assert fit.state is FitState.NORMAL
    assert fit.formula == "Y ~ X"


def test_pagel_estimate_is_bounded(chain_data32, tree32):
    fit = fit_phylo_regression(chain_data32, "Y", ["X"], tree32, CorPagel)
    lo, hi = CorPagel().bounds(tree32.vcv(corr=True).to_numpy())
    assert lo <= fit.phylo_param <= hi
    assert fit.params["X"] > 0.3
    ci = fit.conf_int()
    assert list(ci.columns) == ["lower", "upper"]
    assert ci.loc["X", "lower"] < fit.params["X"] < ci.loc["X", "upper"]


def test_ml_and_reml_both_supported(chain_data32, tree32):
    reml = fit_phylo_regression(chain_data32, "Z", ["Y"], tree32, "pagel", method="REML")
    ml = fit_phylo_regression(chain_data32, "Z", ["Y"], tree32, "pagel", method="ML")
    assert reml.method == "REML" and ml.method == "ML"
    with pytest.raises(ValueError):
        fit_phylo_regression(chain_data32, "Z", ["Y"], tree32, "pagel", method="OLS")


def test_profile_loglik_rejects_non_pd_matrix():
    X = np.ones((3, 1))
    y = np.array([1.0, 2.0, 3.0])
    V = np.array([[1.0, 2.0, 0.0], [2.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
    assert profile_loglik(y, X, V) == -math.inf


def test_failed_normal_fit_retries_bounded(monkeypatch, chain_data32, tree32):
    real = regression._attempt_fit
    seen = []

    def flaky(state, *args):
        seen.append(state)
        out = real(state, *args)
        if state is FitState.NORMAL:
            out.converged = False
            out.message = "forced"
        return out

    monkeypatch.setattr(regression, "_attempt_fit", flaky)
    fit = fit_phylo_regression(chain_data32, "Y", ["X"], tree32, CorPagel)
    assert seen == [FitState.NORMAL, FitState.BOUNDED]
    assert fit.state is FitState.BOUNDED
    assert 0.0 <= fit.phylo_param <= 1.0


def test_both_states_failing_raises(monkeypatch, chain_data32, tree32):
    def never(state, *args):
        return regression._Attempt(state, False, None, -math.inf, "forced")

    monkeypatch.setattr(regression, "_attempt_fit", never)
    with pytest.raises(ConvergenceError):
        fit_phylo_regression(chain_data32, "Y", ["X"], tree32, CorPagel)


def test_too_few_observations(star):
    data = pd.DataFrame({"Y": [1.0, 2.0], "X": [0.5, 0.1]}, index=["sp0", "sp1"])
    with pytest.raises(ValueError):
        fit_phylo_regression(data, "Y", ["X"], star, CorBrownian)


def test_binary_recode_and_design_matrix(chain_data):
    data = chain_data.copy()
    data["B"] = np.where(data["X"] > 0, "yes", "no")
    y, X, binary = design_matrix(data, "Y", ["B", "X"], "Y ~ B + X")
    assert not binary
    assert list(X.columns) == [INTERCEPT, "B", "X"]
    assert set(X["B"].unique()) <= {0.0, 1.0}
    assert (X["B"] == 1.0).equals(data["B"] == "yes")
    assert binary_recode(pd.Series(["b", "a", "b"]), "v").tolist() == [1.0, 0.0, 1.0]


def test_too_many_categories_message(chain_data, star):
    data = chain_data.copy()
    data["K"] = np.tile(["a", "b", "c"], len(data))[: len(data)]
    with pytest.raises(DataShapeError) as exc:
        fit_phylo_regression(data, "K", ["X"], star, formula="K ~ X")
    msg = str(exc.value)
    assert "'K'" in msg and "too many categories" in msg and "K ~ X" in msg
    assert exc.value.n_levels == 3


def test_single_category_message(chain_data, star):
    data = chain_data.copy()
    data["K"] = "only"
    with pytest.raises(DataShapeError, match="only one category"):
        fit_phylo_regression(data, "Y", ["K"], star)


def test_binary_pglmm_on_tree(tree32):
    rng = np.random.default_rng(3)
    x = rng.normal(size=tree32.n_tips)
    p = 1.0 / (1.0 + np.exp(-(0.2 + 1.5 * x)))
    status = np.where(rng.uniform(size=x.size) < p, "present", "absent")
    data = pd.DataFrame({"S": status, "X": x}, index=tree32.tips)
    fit = fit_phylo_regression(data, "S", ["X"], tree32)
    assert isinstance(fit, PGLMMResult)
    assert fit.nobs == tree32.n_tips
    assert fit.s2 >= 0.0
    assert fit.phylo_param == fit.s2
    assert fit.params["X"] > 0
    assert 0.0 <= fit.p_value("X") <= 1.0
    assert np.all(fit.bse > 0)


def test_binary_pglmm_direct_call(star):
    rng = np.random.default_rng(11)
    n = star.n_tips
    X = pd.DataFrame({INTERCEPT: np.ones(n), "x": rng.normal(size=n)}, index=star.tips)
    y = pd.Series((X["x"] + rng.normal(scale=1.0, size=n) > 0).astype(float), index=star.tips)
    fit = fit_binary_pglmm(y, X, star.vcv().to_numpy(), formula="y ~ x")
    assert fit.converged
    assert list(fit.params.index) == [INTERCEPT, "x"]
    assert list(fit.conf_int().columns) == ["lower", "upper"]


def test_collinear_predictors_are_rejected(chain_data32, tree32):
    data = chain_data32.copy()
    data["W"] = 2.0 * data["X"]
    for method in ("ML", "REML"):
        with pytest.raises(np.linalg.LinAlgError, match="singular"):
            fit_phylo_regression(data, "Y", ["X", "W"], tree32, CorPagel, method=method)
    with pytest.raises(np.linalg.LinAlgError, match="singular"):
        fit_phylo_regression(data, "Y", ["X", "W"], tree32, CorBrownian)


def test_binary_pglmm_rejects_collinear_design(star):
    n = star.n_tips
    x = np.linspace(-1.0, 1.0, n)
    X = pd.DataFrame({INTERCEPT: np.ones(n), "x": x, "x2": 3.0 * x}, index=star.tips)
    y = pd.Series((x > 0).astype(float), index=star.tips)
    with pytest.raises(np.linalg.LinAlgError, match="rank 2 < 3"):
        fit_binary_pglmm(y, X, star.vcv().to_numpy())


def test_pglmm_reml_objective_is_a_float(tree32):
    n = tree32.n_tips
    rng = np.random.default_rng(5)
    Vphy = tree32.vcv().to_numpy()
    X = np.column_stack([np.ones(n), rng.normal(size=n)])
    H = rng.normal(size=(n, 1))
    invW = np.eye(n) * 4.0
    value = regression._pglmm_reml(np.array([0.5]), invW, H, Vphy, X)
    assert isinstance(value, float)
    assert math.isfinite(value)
