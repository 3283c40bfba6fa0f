import logging

import pytest

from unitgraph import build_graph


def test_lookup_by_name(mlp_description) -> None:
	g = build_graph(mlp_description)
	assert g.has_buffer("h1")
	assert g.buffer_by_name("h1").name == "h1"
	assert g.has_unit("fc2")
	assert g.unit_by_name("fc2").kind == "InnerProduct"
	assert g.unit_index("fc2") == 3


def test_lookup_miss_is_a_warning_not_an_error(mlp_description, caplog) -> None:
	g = build_graph(mlp_description)
	with caplog.at_level(logging.WARNING, logger="unitgraph.ir.graph"):
		assert g.buffer_by_name("nope") is None
		assert g.unit_by_name("ghost") is None
	assert not g.has_buffer("nope")
	assert not g.has_unit("ghost")
	assert "Unknown buffer name nope" in caplog.text
	assert "Unknown unit name ghost" in caplog.text


def test_per_unit_index_lists(mlp_description) -> None:
	g = build_graph(mlp_description)
	x, target, h1, y, loss = range(5)
	assert g.bottom_ids(0) == []
	assert g.top_ids(0) == [x, target]
	assert g.bottom_ids(1) == [x]
	assert g.top_ids(1) == [h1]
	assert g.bottom_ids(4) == [y, target]
	assert g.top_ids(4) == [loss]
	assert g.output_buffer_indices == [loss]
	assert g.input_buffer_indices == [x, target]


def test_invalid_unit_id(mlp_description) -> None:
	g = build_graph(mlp_description)
	with pytest.raises(IndexError):
		g.bottom_ids(g.num_units)
	with pytest.raises(IndexError):
		g.top_ids(-1)


def test_summary_lists_units_and_params(mlp_description) -> None:
	text = build_graph(mlp_description).summary()
	assert text.startswith("Graph(name='mlp', units=5, buffers=5, params=4, learnable=4)")
	assert "- relu1: ReLU(h1:(4, 5)) -> h1:(4, 5) [backward]" in text
	assert "param #0 fc1[0] '0': 5 3 (15)" in text
