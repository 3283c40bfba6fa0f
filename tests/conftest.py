import sys
from pathlib import Path

import pytest


def pytest_configure() -> None:
    """Make `src/` importable in tests without requiring installation."""
    repo_root = Path(__file__).resolve().parents[1]
    src_dir = repo_root / "src"
    sys.path.insert(0, str(src_dir))


@pytest.fixture
def make_mlp():
    """Factory for a small 2-layer regression description.

    data -> x (4,3), target (4,2)
    fc1 (5) -> h1 -> relu1 (in-place) -> fc2 (2) -> y
    loss = EuclideanLoss(y, target), TRAIN only
    """
    from unitgraph.ir import GraphDescription, Phase, Rule, RuntimeState

    def _make(phase=Phase.TRAIN, batch: int = 4):
        d = GraphDescription(name="mlp", state=RuntimeState(phase=phase))
        d.unit("data", "Input", tops=["x", "target"], attrs={"shape": [[batch, 3], [batch, 2]]})
        d.unit("fc1", "InnerProduct", bottoms=["x"], tops=["h1"], attrs={"num_output": 5})
        d.unit("relu1", "ReLU", bottoms=["h1"], tops=["h1"])
        d.unit("fc2", "InnerProduct", bottoms=["h1"], tops=["y"], attrs={"num_output": 2})
        d.unit(
            "loss", "EuclideanLoss",
            bottoms=["y", "target"], tops=["loss"],
            include=[Rule(phase=Phase.TRAIN)],
        )
        return d

    return _make


@pytest.fixture
def mlp_description(make_mlp):
    return make_mlp()
