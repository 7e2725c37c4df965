"""
Phylogenetic tree — the minimal rooted tree the analysis needs.

The tree is built from an edge list of (parent, child, branch_length) triples
(reading Newick/Nexus files is out of scope; the CLI reads an edge-list CSV).
It provides exactly what phylogenetic regressions need:

- tip labels (species),
- pruning of tips that have no data,
- the phylogenetic variance-covariance matrix (shared root-to-MRCA path length).
"""
from __future__ import annotations

import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import networkx as nx
import numpy as np
import pandas as pd

from .errors import ValidationError


class PhyloTree:
    """
    Rooted tree over named nodes with branch lengths.

    Parameters
    ----------
    edges : iterable of (parent, child, length)
        Every node except the root appears exactly once as a child.
    """

    def __init__(self, edges: Iterable[Tuple[str, str, float]]) -> None:
        g = nx.DiGraph()
        for parent, child, length in edges:
            length = float(length)
            if not math.isfinite(length) or length < 0:
                raise ValidationError(f"Branch {parent}->{child} has invalid length {length}.")
            if g.has_edge(str(parent), str(child)):
                raise ValidationError(f"Branch {parent}->{child} is listed twice.")
            g.add_edge(str(parent), str(child), length=length)
        if g.number_of_nodes() == 0:
            raise ValidationError("A tree needs at least one branch.")
        if not nx.is_arborescence(g):
            raise ValidationError("Edge list does not describe a single rooted tree.")
        self._g = g
        self._root = next(n for n, d in g.in_degree() if d == 0)

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        parent: str = "parent",
        child: str = "child",
        length: str = "length",
    ) -> "PhyloTree":
        missing = [c for c in (parent, child, length) if c not in frame.columns]
        if missing:
            raise ValidationError(f"Tree table is missing columns: {missing}")
        return cls(zip(frame[parent], frame[child], frame[length]))

    # ------------------------------------------------------------------

    @property
    def root(self) -> str:
        return self._root

    @property
    def tips(self) -> List[str]:
        return [n for n in self._g.nodes if self._g.out_degree(n) == 0]

    @property
    def n_tips(self) -> int:
        return len(self.tips)

    def edges(self) -> List[Tuple[str, str, float]]:
        return [(u, v, d["length"]) for u, v, d in self._g.edges(data=True)]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.edges(), columns=["parent", "child", "length"])

    def depths(self) -> Dict[str, float]:
        """Root-to-node path length for every node."""
        depth = {self._root: 0.0}
        for u, v in nx.bfs_edges(self._g, self._root):
            depth[v] = depth[u] + self._g.edges[u, v]["length"]
        return depth

    def is_ultrametric(self, tol: float = 1e-8) -> bool:
        depth = self.depths()
        d = np.array([depth[t] for t in self.tips])
        return bool(np.ptp(d) <= tol * max(1.0, float(d.max())))

    # ------------------------------------------------------------------

    def vcv(self, order: Optional[Sequence[str]] = None, corr: bool = False) -> pd.DataFrame:
        """
        Phylogenetic variance-covariance matrix under Brownian motion.

        Entry (i, j) is the depth of the most recent common ancestor of tips
        i and j; the diagonal holds the tip depths. With `corr=True` the
        matrix is rescaled to unit diagonal.
        """
        tips = list(order) if order is not None else self.tips
        unknown = [t for t in tips if not self._is_tip(t)]
        if unknown:
            raise ValidationError(f"Not tips of this tree: {unknown}")
        depth = self.depths()
        paths = [nx.shortest_path(self._g, self._root, t) for t in tips]
        n = len(tips)
        C = np.zeros((n, n))
        for i in range(n):
            C[i, i] = depth[tips[i]]
            for j in range(i + 1, n):
                mrca = self._root
                for a, b in zip(paths[i], paths[j]):
                    if a != b:
                        break
                    mrca = a
                C[i, j] = C[j, i] = depth[mrca]
        if corr:
            sd = np.sqrt(np.diag(C))
            if np.any(sd <= 0):
                raise ValidationError("Tips at zero distance from the root; correlation is undefined.")
            C = C / np.outer(sd, sd)
        return pd.DataFrame(C, index=tips, columns=tips)

    def drop_tips(self, tips: Iterable[str]) -> "PhyloTree":
        """
        Return a new tree without `tips`. Internal nodes left without
        descendants are removed and nodes with a single child are collapsed
        (branch lengths summed); a single-child root is dropped.
        """
        drop = {str(t) for t in tips}
        unknown = [t for t in drop if not self._is_tip(t)]
        if unknown:
            raise ValidationError(f"Cannot drop unknown tips: {sorted(unknown)}")
        g = self._g.copy()
        g.remove_nodes_from(drop)
        original_tips = set(self.tips)
        dead = [n for n in g.nodes if g.out_degree(n) == 0 and n not in original_tips]
        while dead:
            g.remove_nodes_from(dead)
            dead = [n for n in g.nodes if g.out_degree(n) == 0 and n not in original_tips]
        if not any(n in original_tips for n in g.nodes):
            raise ValidationError("Dropping these tips would leave an empty tree.")

        root = next(n for n, d in g.in_degree() if d == 0)
        while g.out_degree(root) == 1 and root not in original_tips:
            child = next(iter(g.successors(root)))
            if g.out_degree(child) == 0:
                break
            g.remove_node(root)
            root = child
        for node in list(g.nodes):
            if node == root or g.in_degree(node) != 1 or g.out_degree(node) != 1:
                continue
            parent = next(iter(g.predecessors(node)))
            child = next(iter(g.successors(node)))
            length = g.edges[parent, node]["length"] + g.edges[node, child]["length"]
            g.remove_node(node)
            g.add_edge(parent, child, length=length)
        return PhyloTree((u, v, d["length"]) for u, v, d in g.edges(data=True))

    def _is_tip(self, name: str) -> bool:
        return name in self._g and self._g.out_degree(name) == 0

    def __repr__(self) -> str:
        kind = "ultrametric" if self.is_ultrametric() else "non-ultrametric"
        return f"PhyloTree({self.n_tips} tips, {kind}, root={self._root!r})"


def star_tree(tips: Sequence[str], length: float = 1.0, root: str = "root") -> PhyloTree:
    """Star phylogeny: every tip hangs directly off the root."""
    if len(tips) < 2:
        raise ValidationError("A star tree needs at least two tips.")
    return PhyloTree((root, str(t), length) for t in tips)
