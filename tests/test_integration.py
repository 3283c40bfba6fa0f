"""End-to-end tests: describe, filter, build, run, and move weights across phases.

Tests cover:
1. TRAIN and TEST graphs built from one description
2. Weights trained in one graph reproduce outputs in another
3. A residual-style graph with fan-out, shared params and backward
"""

import numpy as np

from unitgraph import GraphConfig, Runtime, build_graph, copy_trained_units_from, export_trained_units
from unitgraph.ir import GraphDescription, ParamSpec, Phase, Rule


# =============================================================================
# 1. Phase variants
# =============================================================================


def test_train_and_test_graphs_share_a_description(make_mlp) -> None:
    train = build_graph(make_mlp(phase=Phase.TRAIN))
    test = build_graph(make_mlp(phase=Phase.TEST))

    assert "loss" in train.unit_names
    assert "loss" not in test.unit_names
    assert [b.name for b in train.output_buffers] == ["loss"]
    assert [b.name for b in test.output_buffers] == ["target", "y"]


# =============================================================================
# 2. Weight hand-off
# =============================================================================


def test_trained_weights_reproduce_outputs(make_mlp) -> None:
    rng = np.random.default_rng(7)
    x = rng.standard_normal((4, 3)).astype(np.float32)
    t = rng.standard_normal((4, 2)).astype(np.float32)

    train_graph = build_graph(make_mlp(phase=Phase.TRAIN), GraphConfig(seed=11))
    train_rt = Runtime(train_graph)
    train_rt.set_input("x", x)
    train_rt.set_input("target", t)

    # A few plain gradient steps so the weights differ from initialization.
    _, first_loss = train_rt.forward(with_loss=True)
    for _ in range(20):
        train_rt.clear_param_diffs()
        train_rt.forward()
        train_rt.backward()
        for param, lr in zip(train_graph.learnable_params, train_graph.params_lr):
            param.data -= 0.05 * lr * param.diff
    _, last_loss = train_rt.forward(with_loss=True)
    assert last_loss < first_loss

    test_graph = build_graph(make_mlp(phase=Phase.TEST), GraphConfig(seed=99))
    copied = copy_trained_units_from(test_graph, export_trained_units(train_graph))
    # The loss unit has no counterpart in the TEST graph.
    assert copied == ["data", "fc1", "relu1", "fc2"]

    test_rt = Runtime(test_graph)
    test_rt.set_input("x", x)
    test_rt.forward()
    np.testing.assert_allclose(test_rt.get_buffer("y"), train_rt.get_buffer("y"), rtol=1e-6)


# =============================================================================
# 3. Fan-out with shared parameters
# =============================================================================


def _siamese() -> GraphDescription:
    d = GraphDescription(name="siamese")
    d.unit("data", "Input", tops=["x"], attrs={"shape": [3, 4]})
    for branch in ("a", "b"):
        d.unit(
            f"fc_{branch}", "InnerProduct", bottoms=["x"], tops=[f"y_{branch}"],
            params=[ParamSpec(name="w"), ParamSpec(name="bias")],
            attrs={"num_output": 2},
        )
    d.unit("merge", "Eltwise", bottoms=["y_a", "y_b"], tops=["m"], attrs={"coeffs": [1.0, -1.0]})
    d.unit("debug", "ReLU", bottoms=["m"], tops=["m_relu"], include=[Rule(stages=("debug",))])
    return d


def test_siamese_branches_cancel() -> None:
    g = build_graph(_siamese(), GraphConfig(force_backward=True))

    assert "x_data_0_split" in g.unit_names
    assert "debug" not in g.unit_names
    assert len(g.learnable_params) == 2
    assert g.param_owners == [-1, -1, 0, 1]

    rt = Runtime(g)
    rt.set_input("x", np.ones((3, 4), dtype=np.float32))
    rt.forward()
    np.testing.assert_allclose(rt.get_buffer("m"), np.zeros((3, 2)), atol=1e-6)

    m = g.buffer_by_name("m")
    m.diff[...] = 1.0
    rt.backward()
    # Shared weights collect equal and opposite gradients from both branches.
    np.testing.assert_allclose(g.learnable_params[0].diff, np.zeros((2, 4)), atol=1e-6)
    x = g.buffer_by_name("x")
    np.testing.assert_allclose(x.diff, np.zeros((3, 4)), atol=1e-6)
