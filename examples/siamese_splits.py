from __future__ import annotations

import sys
from pathlib import Path

repo_root = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(repo_root / "src"))

from unitgraph import build_graph
from unitgraph.ir import GraphDescription, ParamSpec
from unitgraph.passes import FilterPass, SplitInsertionPass

def build_siamese(width: int = 8) -> GraphDescription:
    d = GraphDescription(name="siamese")
    d.unit("data", "Input", tops=["x"], attrs={"shape": [4, width]})
    for branch in ("left", "right"):
        d.unit(
            f"fc_{branch}", "InnerProduct", bottoms=["x"], tops=[f"y_{branch}"],
            params=[ParamSpec(name="shared_w"), ParamSpec(name="shared_b")],
            attrs={"num_output": width},
        )
        d.unit(f"relu_{branch}", "ReLU", bottoms=[f"y_{branch}"], tops=[f"y_{branch}"])
    d.unit("merge", "Eltwise", bottoms=["y_left", "y_right"], tops=["m"], attrs={"operation": "MAX"})
    return d

def main() -> None:
    d = build_siamese()
    print(f"Description: {len(d.units)} units")

    rewritten = SplitInsertionPass().run(FilterPass().run(d))
    print(f"After split insertion: {len(rewritten.units)} units")
    for unit in rewritten.units:
        print(f"- {unit.name} ({unit.type}): {unit.bottoms} -> {unit.tops}")

    g = build_graph(d)
    print()
    print(g.summary())

if __name__ == "__main__":
    main()
