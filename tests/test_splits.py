import numpy as np
import pytest

from unitgraph import GraphConfig, Runtime, build_graph
from unitgraph.ir import GraphDescription, UnknownBufferError
from unitgraph.passes import SplitInsertionPass


def _fan_out() -> GraphDescription:
    # data -> x -> {fc_a, fc_b}
    d = GraphDescription(name="fan_out")
    d.unit("data", "Input", tops=["x"], attrs={"shape": [2, 3]})
    d.unit("fc_a", "InnerProduct", bottoms=["x"], tops=["a"], attrs={"num_output": 2})
    d.unit("fc_b", "InnerProduct", bottoms=["x"], tops=["b"], attrs={"num_output": 2})
    return d


def test_split_inserted_after_producer() -> None:
    out = SplitInsertionPass().run(_fan_out())

    assert [u.name for u in out.units] == ["data", "x_data_0_split", "fc_a", "fc_b"]
    split = out.units[1]
    assert split.type == "Split"
    assert split.bottoms == ["x"]
    assert split.tops == ["x_data_0_split_0", "x_data_0_split_1"]
    assert out.units[2].bottoms == ["x_data_0_split_0"]
    assert out.units[3].bottoms == ["x_data_0_split_1"]


def test_split_pass_does_not_mutate_input() -> None:
    d = _fan_out()
    SplitInsertionPass().run(d)
    assert [u.bottoms for u in d.units] == [[], ["x"], ["x"]]


def test_no_fan_out_is_left_alone(mlp_description) -> None:
    out = SplitInsertionPass().run(mlp_description)
    assert [u.name for u in out.units] == [u.name for u in mlp_description.units]
    assert [u.bottoms for u in out.units] == [u.bottoms for u in mlp_description.units]


def test_in_place_after_fan_out_follows_split_copy() -> None:
    # x feeds fc_a and an in-place relu; fc_b reads the relu output.
    d = GraphDescription(name="in_place_fan_out")
    d.unit("data", "Input", tops=["x"], attrs={"shape": [2, 3]})
    d.unit("fc_a", "InnerProduct", bottoms=["x"], tops=["a"], attrs={"num_output": 2})
    d.unit("relu", "ReLU", bottoms=["x"], tops=["x"])
    d.unit("fc_b", "InnerProduct", bottoms=["x"], tops=["b"], attrs={"num_output": 2})

    out = SplitInsertionPass().run(d)
    relu = out.units[3]
    assert relu.name == "relu"
    assert relu.bottoms == relu.tops == ["x_data_0_split_1"]
    assert out.units[4].bottoms == ["x_data_0_split_1"]

    g = build_graph(d)
    relu_id = g.unit_names.index("relu")
    assert g.bottom_ids(relu_id) == g.top_ids(relu_id)
    assert [b.name for b in g.output_buffers] == ["a", "b"]


def test_fan_out_without_split_pass_is_an_unknown_bottom() -> None:
    with pytest.raises(UnknownBufferError, match="fc_b"):
        build_graph(_fan_out(), GraphConfig(insert_splits=False))


def test_split_forward_copies_values() -> None:
    g = build_graph(_fan_out())
    rt = Runtime(g)
    x = np.arange(6, dtype=np.float32).reshape(2, 3)
    rt.set_input("x", x)
    rt.forward()
    np.testing.assert_array_equal(rt.get_buffer("x_data_0_split_0"), x)
    np.testing.assert_array_equal(rt.get_buffer("x_data_0_split_1"), x)
