"""
Basis sets and causal ordering.

- DSepStatement   one conditional-independence claim, "dep _||_ ind | cond"
- basis_set       Shipley's basis set of a DAG under a causal order
- find_consensus_order
                  a single causal order shared by a whole model set
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import reduce
from typing import Dict, FrozenSet, List, Mapping, Sequence, Tuple

import networkx as nx
import pandas as pd

from .dag import DAG
from .errors import ModelSetError
from .utils.logging_utils import get_logger

log = get_logger("phylopath.basis_set")


@dataclass(frozen=True, eq=False)
class DSepStatement:
    """
    `dependent` is independent of `independent` given `conditioning`.

    Two statements are equal when they describe the same regression,
    irrespective of the order of the conditioning set.
    """

    dependent: str
    independent: str
    conditioning: Tuple[str, ...] = ()

    @property
    def key(self) -> Tuple[str, str, FrozenSet[str]]:
        return (self.dependent, self.independent, frozenset(self.conditioning))

    @property
    def predictors(self) -> List[str]:
        """Regression terms; the tested variable comes last."""
        return [*self.conditioning, self.independent]

    @property
    def formula(self) -> str:
        return f"{self.dependent} ~ {' + '.join(self.predictors)}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DSepStatement):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __str__(self) -> str:
        return self.formula


def _check_order(order: Sequence[str]) -> Dict[str, int]:
    order = [str(v) for v in order]
    if len(set(order)) != len(order):
        raise ModelSetError(f"Causal order contains duplicates: {order}")
    return {v: i for i, v in enumerate(order)}


def basis_set(dag: DAG, order: Sequence[str]) -> List[DSepStatement]:
    """
    Derive the d-separation statements implied by `dag`.

    For every pair of non-adjacent variables, the one later in `order` is the
    dependent variable and the conditioning set is the union of both
    variables' parents. Variables missing from `order`, and variables
    declared isolated, are not tested. A saturated DAG yields an empty list.
    """
    if not dag.is_acyclic():
        raise ModelSetError("Basis sets are only defined for acyclic models.")
    pos = _check_order(order)

    def rank(v: str) -> Tuple[int, str]:
        return (pos.get(v, len(pos)), v)

    nodes = [v for v in dag.topological_order(priority=list(pos)) if v in pos and v not in dag.isolated]

    statements: List[DSepStatement] = []
    for i, a in enumerate(nodes):
        for b in nodes[i + 1:]:
            if dag.adjacent(a, b):
                continue
            dep, ind = (b, a) if pos[b] > pos[a] else (a, b)
            cond = (set(dag.parents(a)) | set(dag.parents(b))) - {a, b}
            statements.append(DSepStatement(dep, ind, tuple(sorted(cond, key=rank))))
    return statements


def find_consensus_order(models: Mapping[str, DAG]) -> List[str]:
    """
    One causal order for all models.

    If the union of all models is acyclic its topological order is used.
    Otherwise variables are placed greedily: at each step the remaining
    variable that precedes (by directed path) the largest number of other
    remaining variables in a majority of models is placed next. Ties go to
    the variable defined first.
    """
    if not models:
        raise ModelSetError("The model set is empty.")
    names = list(models)
    variables = models[names[0]].variables
    for name in names[1:]:
        if set(models[name].variables) != set(variables):
            raise ModelSetError(
                f"Model '{name}' uses variables {sorted(models[name].variables)}, "
                f"but model '{names[0]}' uses {sorted(variables)}."
            )
    dags = [models[n].reindex(variables) for n in names]

    full = reduce(lambda a, b: a.union(b), dags)
    if full.is_acyclic():
        return full.topological_order(priority=variables)

    log.info("The union of all models is cyclic; using the majority pairwise order.")
    precedes = pd.DataFrame(0, index=variables, columns=variables)
    for d in dags:
        g = d.to_networkx()
        for a in variables:
            for b in nx.descendants(g, a):
                precedes.loc[a, b] += 1

    remaining = list(variables)
    order: List[str] = []
    while remaining:
        def wins(v: str) -> int:
            return sum(1 for u in remaining if u != v and precedes.loc[v, u] > precedes.loc[u, v])

        best = max(remaining, key=lambda v: (wins(v), -variables.index(v)))
        order.append(best)
        remaining.remove(best)
    return order
