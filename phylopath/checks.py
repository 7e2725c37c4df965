"""
Input validation — models, trait data and tree.

Runs before any regression is fitted:
- all models are DAG objects over the same variables (re-aligned to one order),
- every model variable is a data column,
- every species in the data is a tip of the tree,
- rows with missing values are dropped (with a message) or rejected,
- tips without data are pruned from the tree (with a message).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping

import pandas as pd

from .dag import DAG
from .errors import ModelSetError, ValidationError
from .tree import PhyloTree
from .utils.logging_utils import get_logger

log = get_logger("phylopath.checks")


@dataclass
class CheckedInput:
    models: Dict[str, DAG]
    data: pd.DataFrame
    tree: PhyloTree
    dropped_rows: List[str] = field(default_factory=list)
    pruned_tips: List[str] = field(default_factory=list)


def check_models(models: Mapping[str, DAG]) -> Dict[str, DAG]:
    """Validate a model set and align every model to the first one's variable order."""
    if not isinstance(models, Mapping) or not models:
        raise ModelSetError("`models` must be a non-empty mapping of name -> DAG.")
    bad = [name for name, m in models.items() if not isinstance(m, DAG)]
    if bad:
        raise ModelSetError(f"Models {bad} are not DAG objects; build them with DAG() or define_model_set().")
    names = list(models)
    variables = models[names[0]].variables
    for name in names[1:]:
        if set(models[name].variables) != set(variables):
            only_here = sorted(set(models[name].variables) - set(variables))
            only_first = sorted(set(variables) - set(models[name].variables))
            raise ModelSetError(
                f"All models must include the same variables. Model '{name}' differs from "
                f"'{names[0]}' (extra: {only_here}, missing: {only_first})."
            )
    return {str(name): models[name].reindex(variables) for name in names}


def check_models_data_tree(
    models: Mapping[str, DAG],
    data: pd.DataFrame,
    tree: PhyloTree,
    na_rm: bool = True,
) -> CheckedInput:
    models = check_models(models)
    variables = next(iter(models.values())).variables

    if not isinstance(data, pd.DataFrame):
        data = pd.DataFrame(data)
    if not isinstance(tree, PhyloTree):
        raise ValidationError(f"`tree` must be a PhyloTree, got {type(tree).__name__}.")

    missing = [v for v in variables if v not in data.columns]
    if missing:
        raise ValidationError(f"Variables {missing} are used in the models but are not columns of the data.")
    data = data.loc[:, variables].copy()
    data.index = data.index.astype(str)
    if data.index.has_duplicates:
        dupes = sorted(set(data.index[data.index.duplicated()]))
        raise ValidationError(f"Species occur more than once in the data: {dupes}")

    tips = set(tree.tips)
    not_in_tree = [s for s in data.index if s not in tips]
    if not_in_tree:
        raise ValidationError(
            f"{len(not_in_tree)} species in the data are not tips of the tree: {not_in_tree}"
        )

    na_rows = [str(s) for s in data.index[data.isna().any(axis=1)]]
    if na_rows:
        if not na_rm:
            raise ValidationError(
                f"{len(na_rows)} rows contain missing values ({na_rows}); drop them or use na_rm=True."
            )
        data = data.drop(index=na_rows)
        log.info("%d rows were dropped because they contained missing values: %s", len(na_rows), na_rows)

    extra = [t for t in tree.tips if t not in data.index]
    if extra:
        tree = tree.drop_tips(extra)
        log.info("Pruned the tree: dropped %d species not present in the data: %s", len(extra), extra)

    data = data.loc[tree.tips]
    return CheckedInput(models=models, data=data, tree=tree, dropped_rows=na_rows, pruned_tips=extra)
