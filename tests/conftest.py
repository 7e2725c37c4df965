"""
Shared pytest fixtures for phylopath tests.

Provides small simulated phylogenies and trait tables, and writes a minimal
analysis config (plus the CSV inputs it points to) into tmp_path for the CLI.
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List

import numpy as np
import pandas as pd
import pytest

from phylopath.tree import PhyloTree, star_tree
from phylopath.utils.config_loader import load_yaml


def balanced_tree(depth: int, length: float = 1.0) -> PhyloTree:
    """Ultrametric fully bifurcating tree with 2**depth tips named s0, s1, ..."""
    edges = []
    level: List[str] = ["n0"]
    counter = 1
    for _ in range(depth):
        nxt: List[str] = []
        for parent in level:
            for _side in range(2):
                child = f"n{counter}"
                counter += 1
                edges.append((parent, child, length))
                nxt.append(child)
        level = nxt
    rename = {old: f"s{i}" for i, old in enumerate(level)}
    return PhyloTree((p, rename.get(c, c), bl) for p, c, bl in edges)


def simulate_chain(species: List[str], seed: int = 1, tree: PhyloTree = None) -> pd.DataFrame:
    """
    X -> Y -> Z with strong effects. With a tree, X carries Brownian-motion
    phylogenetic signal; the residuals are independent.
    """
    rng = np.random.default_rng(seed)
    n = len(species)
    if tree is None:
        x = rng.normal(size=n)
    else:
        C = tree.vcv(order=species).to_numpy()
        x = rng.multivariate_normal(np.zeros(n), C) / np.sqrt(C[0, 0])
    y = 0.8 * x + rng.normal(scale=0.5, size=n)
    z = 0.8 * y + rng.normal(scale=0.5, size=n)
    return pd.DataFrame({"X": x, "Y": y, "Z": z}, index=species)


@pytest.fixture(scope="function")
def species() -> List[str]:
    return [f"sp{i}" for i in range(50)]


@pytest.fixture(scope="function")
def star(species) -> PhyloTree:
    return star_tree(species)


@pytest.fixture(scope="function")
def chain_data(species) -> pd.DataFrame:
    return simulate_chain(species, seed=1)


@pytest.fixture(scope="function")
def tree32() -> PhyloTree:
    return balanced_tree(5)


@pytest.fixture(scope="function")
def chain_data32(tree32) -> pd.DataFrame:
    return simulate_chain(tree32.tips, seed=7, tree=tree32)


_MIN_ANALYSIS_YAML = """\
run:
  output_dir: "{OUT}"

analysis:
  data: "data/traits.csv"
  tree: "data/tree.csv"
  species_column: "species"
  cor_fun: "pagel"
  order: ["X", "Y", "Z"]
  method: "REML"
  cut_off: 2.0
  average_method: "conditional"

models:
  chain: ["Y ~ X", "Z ~ Y"]
  reversed: ["Z ~ X", "Y ~ Z"]
  direct: ["Y ~ X", "Z ~ X"]

logging:
  level: "INFO"
  to_file: false
"""


@pytest.fixture(scope="function")
def cfg_path(tmp_path: Path, species, star, chain_data) -> Path:
    """Writes a minimal analysis.yaml (and its CSV inputs) under tmp_path and returns its path."""
    cfg_dir = tmp_path / "configs"
    data_dir = cfg_dir / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    chain_data.rename_axis("species").reset_index().to_csv(data_dir / "traits.csv", index=False)
    star.to_frame().to_csv(data_dir / "tree.csv", index=False)

    out_dir = tmp_path / "outputs"
    text = _MIN_ANALYSIS_YAML.replace("{OUT}", str(out_dir.as_posix()))
    p = cfg_dir / "analysis.yaml"
    p.write_text(text, encoding="utf-8")
    return p


@pytest.fixture(scope="function")
def cfg(cfg_path: Path) -> Dict:
    """Loads the YAML produced by cfg_path for convenience."""
    return load_yaml(cfg_path)
