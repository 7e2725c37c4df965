# FILE: phylopath/dag.py
# ======================================================================================
# phylopath
# DAG — causal models as named 0/1 adjacency matrices
# --------------------------------------------------------------------------------------
# What this is
# ------------
# The single concrete graph type used throughout the package. A DAG is a square
# pandas DataFrame indexed by variable name on both axes:
#
#     adjacency.loc[parent, child] == 1   ⇔   parent -> child
#
# Models are usually written as regression-style formulas:
#
#     DAG("LS ~ BM", "NL ~ BM", "DD ~ NL")      # BM -> LS, BM -> NL, NL -> DD
#     DAG("LS ~ BM", "RS ~ RS")                 # RS is defined but left isolated
#
# A self-referencing formula ("RS ~ RS") keeps the variable in the adjacency
# matrix but excludes it from d-separation testing.
#
# Acyclicity is NOT enforced on construction: an averaged model is a union of
# edges and may legitimately contain cycles. Operations that need a DAG
# (topological ordering, basis sets) check it themselves.
#
# Display is kept out of the type: `format_dag` and `to_dot` are plain functions
# over the same data.
# ======================================================================================

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import networkx as nx
import numpy as np
import pandas as pd

from .errors import ModelSetError

_NAME = r"[A-Za-z_.][A-Za-z0-9_.]*"
_NAME_RE = re.compile(rf"^{_NAME}$")


def parse_formula(formula: str) -> Tuple[str, List[str]]:
    """
    Split "Y ~ A + B" into ("Y", ["A", "B"]).

    Whitespace is ignored; duplicate predictors are collapsed.
    """
    if not isinstance(formula, str) or formula.count("~") != 1:
        raise ModelSetError(f"Malformed formula {formula!r}: expected exactly one '~'.")
    lhs, rhs = (part.strip() for part in formula.split("~"))
    terms = [t.strip() for t in rhs.split("+")]
    if not lhs or any(not t for t in terms):
        raise ModelSetError(f"Malformed formula {formula!r}: empty term.")
    for name in [lhs, *terms]:
        if not _NAME_RE.match(name):
            raise ModelSetError(f"Malformed formula {formula!r}: invalid variable name {name!r}.")
    seen: List[str] = []
    for t in terms:
        if t not in seen:
            seen.append(t)
    return lhs, seen


class DAG:
    """
    Causal model over a fixed, ordered set of named variables.

    Parameters
    ----------
    *formulas : str
        Regression-style formulas; every term on the right-hand side becomes a
        parent of the left-hand side.
    variables : sequence of str, optional
        Explicit variable order. Defaults to order of first appearance in the
        formulas (left-hand side before right-hand side).
    """

    def __init__(self, *formulas: str, variables: Optional[Sequence[str]] = None) -> None:
        if not formulas:
            raise ModelSetError("A DAG needs at least one formula.")
        seen: List[str] = []
        edges: List[Tuple[str, str]] = []
        isolated: List[str] = []

        def _see(name: str) -> None:
            if name not in seen:
                seen.append(name)

        for f in formulas:
            child, parents = parse_formula(f)
            _see(child)
            for p in parents:
                if p == child:
                    if len(parents) > 1:
                        raise ModelSetError(f"Formula {f!r} makes '{child}' its own parent.")
                    isolated.append(child)
                    continue
                _see(p)
                edges.append((p, child))

        if variables is not None:
            missing = [v for v in seen if v not in variables]
            if missing:
                raise ModelSetError(f"Formulas use variables not listed in `variables`: {missing}")
            seen = list(variables)

        adj = pd.DataFrame(0, index=seen, columns=seen, dtype=int)
        for p, c in edges:
            adj.loc[p, c] = 1
        self._init_parts(adj, isolated)

    # ------------------------------ constructors --------------------------------------

    @classmethod
    def from_adjacency(cls, adjacency: pd.DataFrame, isolated: Iterable[str] = ()) -> "DAG":
        """Wrap an existing square 0/1 DataFrame (copied)."""
        obj = cls.__new__(cls)
        obj._init_parts(adjacency, isolated)
        return obj

    @classmethod
    def from_edges(
        cls,
        edges: Iterable[Tuple[str, str]],
        variables: Optional[Sequence[str]] = None,
    ) -> "DAG":
        """Build from (parent, child) pairs."""
        edges = list(edges)
        names: List[str] = list(variables) if variables is not None else []
        for p, c in edges:
            for v in (p, c):
                if v not in names:
                    if variables is not None:
                        raise ModelSetError(f"Edge uses unknown variable '{v}'.")
                    names.append(v)
        adj = pd.DataFrame(0, index=names, columns=names, dtype=int)
        for p, c in edges:
            adj.loc[p, c] = 1
        return cls.from_adjacency(adj)

    def _init_parts(self, adjacency: pd.DataFrame, isolated: Iterable[str]) -> None:
        adj = pd.DataFrame(adjacency).copy()
        if list(adj.index) != list(adj.columns):
            raise ModelSetError("Adjacency matrix must have identical row and column labels.")
        if adj.index.has_duplicates:
            raise ModelSetError("Adjacency matrix has duplicated variable names.")
        values = adj.to_numpy()
        if not np.isin(values, (0, 1)).all():
            raise ModelSetError("Adjacency matrix entries must be 0 or 1.")
        if np.any(np.diag(values) != 0):
            raise ModelSetError("Adjacency matrix diagonal must be 0 (no self-loops).")
        adj = adj.astype(int)
        adj.index = adj.index.astype(str)
        adj.columns = adj.index
        iso = frozenset(str(v) for v in isolated)
        unknown = iso.difference(adj.index)
        if unknown:
            raise ModelSetError(f"Isolated variables not in the model: {sorted(unknown)}")
        for v in iso:
            if adj.loc[v].any() or adj[v].any():
                raise ModelSetError(f"Variable '{v}' is declared isolated but has edges.")
        self._adj = adj
        self._isolated = iso

    # ------------------------------ basic queries -------------------------------------

    @property
    def variables(self) -> List[str]:
        return list(self._adj.index)

    @property
    def adjacency(self) -> pd.DataFrame:
        return self._adj.copy()

    @property
    def isolated(self) -> frozenset:
        return self._isolated

    @property
    def n_edges(self) -> int:
        return int(self._adj.to_numpy().sum())

    def edges(self) -> List[Tuple[str, str]]:
        """(parent, child) pairs, row-major in variable order."""
        rows, cols = np.nonzero(self._adj.to_numpy())
        names = self.variables
        return [(names[r], names[c]) for r, c in zip(rows, cols)]

    def has_edge(self, parent: str, child: str) -> bool:
        return bool(self._adj.loc[parent, child])

    def adjacent(self, a: str, b: str) -> bool:
        return self.has_edge(a, b) or self.has_edge(b, a)

    def parents(self, v: str) -> List[str]:
        col = self._adj[v]
        return [p for p in self.variables if col[p]]

    def children(self, v: str) -> List[str]:
        row = self._adj.loc[v]
        return [c for c in self.variables if row[c]]

    # ------------------------------ graph algorithms ----------------------------------

    def to_networkx(self) -> nx.DiGraph:
        g = nx.DiGraph()
        g.add_nodes_from(self.variables)
        g.add_edges_from(self.edges())
        return g

    def is_acyclic(self) -> bool:
        return nx.is_directed_acyclic_graph(self.to_networkx())

    def topological_order(self, priority: Optional[Sequence[str]] = None) -> List[str]:
        """
        Deterministic topological order; among free variables the one earliest
        in `priority` (default: this DAG's variable order) comes first.
        """
        g = self.to_networkx()
        if not nx.is_directed_acyclic_graph(g):
            raise ModelSetError("Model is cyclic; no topological order exists.")
        rank = {v: i for i, v in enumerate(priority or self.variables)}
        fallback = len(rank)
        return list(nx.lexicographical_topological_sort(g, key=lambda v: (rank.get(v, fallback), v)))

    def reindex(self, variables: Sequence[str]) -> "DAG":
        """Same edges over a (super)set of variables in the given order."""
        variables = [str(v) for v in variables]
        missing = [v for v in self.variables if v not in variables]
        if missing:
            raise ModelSetError(f"Cannot drop variables {missing} from a model.")
        adj = self._adj.reindex(index=variables, columns=variables, fill_value=0)
        return DAG.from_adjacency(adj, self._isolated)

    def union(self, other: "DAG") -> "DAG":
        """Edge union over the combined variable set; the result may be cyclic."""
        names = self.variables + [v for v in other.variables if v not in self.variables]
        a = self.reindex(names).adjacency
        b = other.reindex(names).adjacency
        return DAG.from_adjacency((a | b).astype(int))

    # ------------------------------ dunder --------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DAG):
            return NotImplemented
        if set(self.variables) != set(other.variables):
            return False
        return set(self.edges()) == set(other.edges()) and self._isolated == other._isolated

    def __hash__(self) -> int:
        return hash((frozenset(self.variables), frozenset(self.edges()), self._isolated))

    def __repr__(self) -> str:
        return f"DAG({len(self.variables)} variables, {self.n_edges} edges)\n" + format_dag(self)


# --------------------------------------------------------------------------------------
# Model sets
# --------------------------------------------------------------------------------------

def define_model_set(
    models: Mapping[str, Sequence[str]],
    common: Optional[Sequence[str]] = None,
) -> Dict[str, DAG]:
    """
    Build a named model set from formulas.

    Parameters
    ----------
    models : mapping of name -> list of formulas
    common : list of formulas, optional
        Paths shared by every model (added to each).

    All models are expanded to the same variable set, ordered by first
    appearance across the whole set.
    """
    if not models:
        raise ModelSetError("The model set is empty.")
    common = list(common or [])
    dags: Dict[str, DAG] = {}
    for name, formulas in models.items():
        if isinstance(formulas, str):
            formulas = [formulas]
        dags[str(name)] = DAG(*common, *formulas)
    names: List[str] = []
    for d in dags.values():
        for v in d.variables:
            if v not in names:
                names.append(v)
    return {k: d.reindex(names) for k, d in dags.items()}


# --------------------------------------------------------------------------------------
# Display helpers
# --------------------------------------------------------------------------------------

def format_dag(dag: DAG, weights: Optional[pd.DataFrame] = None, digits: int = 3) -> str:
    """One edge per line, optionally annotated with a weight matrix."""
    lines = []
    for p, c in dag.edges():
        if weights is not None:
            lines.append(f"{p} -> {c}  ({weights.loc[p, c]:.{digits}f})")
        else:
            lines.append(f"{p} -> {c}")
    unconnected = [v for v in dag.variables if not dag.parents(v) and not dag.children(v)]
    if unconnected:
        lines.append("unconnected: " + ", ".join(unconnected))
    return "\n".join(lines)


def to_dot(dag: DAG, weights: Optional[pd.DataFrame] = None, name: str = "DAG") -> str:
    """Graphviz DOT export; edge labels carry weights when given."""
    lines = [f"digraph {name} {{", "  graph [rankdir=LR];", "  node [shape=box];"]
    for v in dag.variables:
        lines.append(f'  "{v}";')
    for p, c in dag.edges():
        if weights is not None:
            w = float(weights.loc[p, c])
            lines.append(f'  "{p}" -> "{c}" [label="{w:.2f}", penwidth={1 + 2 * min(abs(w), 2):.2f}];')
        else:
            lines.append(f'  "{p}" -> "{c}";')
    lines.append("}")
    return "\n".join(lines)
