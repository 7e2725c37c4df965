from __future__ import annotations

import numpy as np
import pytest

from phylopath.correlation import LAMBDA_CAP, CorBrownian, CorPagel, resolve_cor_struct


def test_pagel_scales_off_diagonal_only(tree32):
    C = tree32.vcv(corr=True).to_numpy()
    V = CorPagel().matrix(C, 0.5)
    assert np.allclose(np.diag(V), 1.0)
    off = ~np.eye(len(C), dtype=bool)
    assert np.allclose(V[off], 0.5 * C[off])
    assert np.allclose(CorPagel().matrix(C, 0.0), np.eye(len(C)))


def test_pagel_bounds(tree32, star):
    lo, hi = CorPagel().bounds(tree32.vcv(corr=True).to_numpy())
    assert lo == 0.0 and 1.0 <= hi <= LAMBDA_CAP
    assert CorPagel().bounds(star.vcv(corr=True).to_numpy()) == (0.0, LAMBDA_CAP)


def test_brownian_has_no_parameter(tree32):
    C = tree32.vcv(corr=True).to_numpy()
    bm = CorBrownian()
    assert not bm.estimated
    assert np.allclose(bm.matrix(C), C)


def test_fixed_structures():
    assert not CorPagel(0.3, fixed=True).estimated
    assert CorPagel(fixed=True).value == 1.0

    class _NoDefault(CorPagel):
        default_value = None
    with pytest.raises(ValueError):
        _NoDefault(fixed=True)


@pytest.mark.parametrize("cor_fun, expected", [
    (None, CorPagel),
    ("pagel", CorPagel),
    ("corPagel", CorPagel),
    ("lambda", CorPagel),
    ("corBrownian", CorBrownian),
    ("BM", CorBrownian),
    (CorBrownian, CorBrownian),
    (CorPagel(0.2, fixed=True), CorPagel),
])
def test_resolve_cor_struct(cor_fun, expected):
    assert isinstance(resolve_cor_struct(cor_fun), expected)


def test_resolve_cor_struct_rejects_unknown():
    with pytest.raises(ValueError):
        resolve_cor_struct("ornstein")
    with pytest.raises(TypeError):
        resolve_cor_struct(42)
    with pytest.raises(TypeError):
        resolve_cor_struct(lambda: "not a structure")
