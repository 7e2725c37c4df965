# phylopath/__init__.py
# ======================================================================================
# phylopath — Phylogenetic path analysis
#
# Compares competing causal models (DAGs) over species traits while accounting for
# shared ancestry:
#   1) models    → DAG / define_model_set
#   2) basis set → the d-separation statements each model implies
#   3) fitting   → one phylogenetic regression per distinct statement
#                  (GLS with Pagel's lambda / Brownian motion, or binary PGLMM)
#   4) ranking   → Fisher's C, CICc, model weights (summary)
#   5) paths     → standardized coefficients for the best, a chosen or an
#                  averaged model (best / choice / average)
#
# Design goals
# ------------
# - Library-first: everything is a plain function over DataFrames and DAGs.
# - CLI on top (`phylopath.cli` via Typer) for config-driven runs.
# - Deterministic: same inputs give the same basis sets, order and tables.
#
# License: MIT (c) 2025 phylopath contributors
# ======================================================================================

from __future__ import annotations

import os
from pathlib import Path

from .correlation import CorBrownian, CorPagel, CorStruct
from .core import PhylopathResult, phylo_path, summary
from .dag import DAG, define_model_set, format_dag, to_dot
from .errors import (
    ConvergenceError,
    DataShapeError,
    FittingError,
    ModelSetError,
    PhylopathError,
    ValidationError,
)
from .fitted import FittedDAG, average, average_dags, best, choice, est_dag
from .tree import PhyloTree, star_tree

__all__ = [
    # Models
    "DAG",
    "define_model_set",
    "format_dag",
    "to_dot",
    # Phylogeny
    "PhyloTree",
    "star_tree",
    "CorStruct",
    "CorPagel",
    "CorBrownian",
    # Analysis
    "phylo_path",
    "PhylopathResult",
    "summary",
    "best",
    "choice",
    "average",
    "average_dags",
    "est_dag",
    "FittedDAG",
    # Errors
    "PhylopathError",
    "ValidationError",
    "ModelSetError",
    "DataShapeError",
    "ConvergenceError",
    "FittingError",
    # Utils
    "get_version",
    "get_package_root",
]


# --------------------------------------------------------------------------------------
# Versioning (manual bump or CI auto-injected via env var PHYLOPATH_VERSION)
# --------------------------------------------------------------------------------------

def get_version() -> str:
    """
    Return the package version.
    Uses environment variable PHYLOPATH_VERSION if present, else falls back to static.
    """
    return os.environ.get("PHYLOPATH_VERSION", "1.0.0")


def get_package_root() -> Path:
    """Directory containing the phylopath package."""
    return Path(__file__).resolve().parent


__version__ = get_version()
