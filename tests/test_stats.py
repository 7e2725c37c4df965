from __future__ import annotations

import logging
import math

import numpy as np
import pytest

from phylopath.stats import c_p, c_stat, cicc, rel_likelihood, weights


def test_fisher_c():
    assert c_stat([]) == 0.0
    assert c_stat([1.0, 1.0]) == 0.0
    assert c_stat([0.5]) == pytest.approx(-2 * math.log(0.5))
    assert c_stat([0.0, 0.5]) == math.inf
    assert c_stat(np.random.default_rng(0).uniform(size=20)) >= 0
    with pytest.raises(ValueError):
        c_stat([0.5, 1.2])
    with pytest.raises(ValueError):
        c_stat([float("nan")])


def test_c_p_value():
    assert c_p(0.0, 0) == 1.0
    assert c_p(0.0, 3) == pytest.approx(1.0)
    # chi-square with 2 df: sf(x) = exp(-x/2)
    assert c_p(4.0, 1) == pytest.approx(math.exp(-2.0))


def test_cicc():
    assert cicc(3.0, 5, 50) == pytest.approx(3.0 + 2 * 5 * 50 / 44)


def test_cicc_degenerate_denominator(caplog):
    caplog.set_level(logging.WARNING, logger="phylopath")
    assert cicc(1.0, 9, 10) == math.inf
    assert cicc(1.0, 12, 10) == math.inf
    assert "CICc undefined" in caplog.text


def test_weights_sum_to_one():
    delta = np.array([0.0, 1.3, 4.0, 10.0])
    l = rel_likelihood(delta)
    assert l[0] == 1.0
    assert np.all(np.diff(l) < 0)
    w = weights(l)
    assert w.sum() == pytest.approx(1.0)
    assert w[0] == w.max()
