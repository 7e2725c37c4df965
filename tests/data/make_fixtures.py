# tests/data/make_fixtures.py
# Writes a small simulated data set for manual runs of the CLI:
#   tree.csv    balanced ultrametric tree, 64 tips, as a parent/child/length edge list
#   traits.csv  body mass (BM), litter size (LS), range size (RS) and a binary
#               diet trait, with BM -> LS -> RS and BM -> Diet
# Usage: python tests/data/make_fixtures.py && phylopath run -c configs/example.yaml
from pathlib import Path

import numpy as np
import pandas as pd

ROOT = Path(__file__).parent
SEED = 2024
DEPTH = 6


def make_tree(depth=DEPTH):
    edges, level, counter = [], ["root"], 0
    for _ in range(depth):
        nxt = []
        for parent in level:
            for _side in range(2):
                counter += 1
                child = f"n{counter}"
                edges.append((parent, child, 1.0))
                nxt.append(child)
        level = nxt
    tips = {old: f"sp{i:02d}" for i, old in enumerate(level)}
    frame = pd.DataFrame(edges, columns=["parent", "child", "length"])
    frame["child"] = frame["child"].map(lambda c: tips.get(c, c))
    return frame, list(tips.values())


def brownian(frame, tips, rng, sigma=1.0):
    # trait value at every node = parent value + N(0, sigma^2 * length)
    value = {"root": 0.0}
    for parent, child, length in frame.itertuples(index=False):
        value[child] = value[parent] + rng.normal(scale=sigma * np.sqrt(length))
    return np.array([value[t] for t in tips])


def make_traits(frame, tips, rng):
    n = len(tips)
    bm = brownian(frame, tips, rng) / np.sqrt(DEPTH)
    ls = -0.6 * bm + 0.5 * brownian(frame, tips, rng) / np.sqrt(DEPTH) + rng.normal(scale=0.4, size=n)
    rs = 0.7 * ls + rng.normal(scale=0.5, size=n)
    p = 1.0 / (1.0 + np.exp(-1.5 * bm))
    diet = np.where(rng.uniform(size=n) < p, "carnivore", "herbivore")
    return pd.DataFrame({"species": tips, "BM": bm, "LS": ls, "RS": rs, "Diet": diet})


if __name__ == "__main__":
    rng = np.random.default_rng(SEED)
    tree, tips = make_tree()
    traits = make_traits(tree, tips, rng)
    tree.to_csv(ROOT / "tree.csv", index=False)
    traits.to_csv(ROOT / "traits.csv", index=False)
    print(f"Wrote {len(tips)} species → {ROOT}")
