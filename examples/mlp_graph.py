from __future__ import annotations

import logging
import sys
from pathlib import Path

import numpy as np

repo_root = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(repo_root / "src"))

from unitgraph import GraphConfig, Runtime, build_graph, copy_trained_units_from, export_trained_units
from unitgraph.ir import GraphDescription, Phase, Rule, RuntimeState

def build_mlp(phase: Phase, batch: int = 8, hidden: int = 16) -> GraphDescription:
    d = GraphDescription(name="mlp_2layer", state=RuntimeState(phase=phase))
    d.unit("data", "Input", tops=["x", "target"], attrs={"shape": [[batch, 4], [batch, 1]]})
    d.unit("fc1", "InnerProduct", bottoms=["x"], tops=["h1"], attrs={"num_output": hidden, "weight_std": 0.5})
    d.unit("relu1", "ReLU", bottoms=["h1"], tops=["h1"])
    d.unit("fc2", "InnerProduct", bottoms=["h1"], tops=["y"], attrs={"num_output": 1, "weight_std": 0.5})
    d.unit("loss", "EuclideanLoss", bottoms=["y", "target"], tops=["loss"], include=[Rule(phase=Phase.TRAIN)])
    return d

def main() -> None:
    logging.basicConfig(level=logging.WARNING)
    rng = np.random.default_rng(0)
    x = rng.standard_normal((8, 4)).astype(np.float32)
    target = (x.sum(axis=1, keepdims=True) > 0).astype(np.float32)

    print("Building TRAIN graph...")
    train = build_graph(build_mlp(Phase.TRAIN), GraphConfig(seed=1))
    print(train.summary())
    print(f"Memory: {train.memory_used} elements ({train.memory_bytes} bytes)")

    rt = Runtime(train)
    rt.set_input("x", x)
    rt.set_input("target", target)

    print("\nTraining...")
    for step in range(200):
        rt.clear_param_diffs()
        _, loss = rt.forward(with_loss=True)
        rt.backward()
        for param, lr in zip(train.learnable_params, train.params_lr):
            param.data -= 0.05 * lr * param.diff
        if step % 50 == 0:
            print(f"- step {step:3d}: loss {loss:.5f}")

    print("\nBuilding TEST graph and copying weights...")
    test = build_graph(build_mlp(Phase.TEST), GraphConfig(seed=2))
    copied = copy_trained_units_from(test, export_trained_units(train))
    print(f"Copied: {', '.join(copied)}")
    print(f"Outputs: {[b.name for b in test.output_buffers]}")

    test_rt = Runtime(test)
    test_rt.set_input("x", x)
    test_rt.forward()
    y = test_rt.get_buffer("y")
    print(f"Max |train - test| on y: {np.abs(y - rt.get_buffer('y')).max():.2e}")

if __name__ == "__main__":
    main()
