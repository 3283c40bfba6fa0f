"""Execution of a built Graph.

Runtime walks the graph's unit list in index order and calls each unit's
capability methods over the buffers the builder resolved for it. It holds no
state of its own besides the graph reference.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from unitgraph.ir import Buffer, ExecutionRangeError

if TYPE_CHECKING:
    from unitgraph.ir import Graph

logger = logging.getLogger(__name__)

__all__ = ["Runtime"]


class Runtime:
    """Forward/backward driver for one Graph instance.

    A graph instance must be driven from one thread at a time: in-place units
    and shared parameters mutate the same arrays.

    Example:
        >>> rt = Runtime(graph)
        >>> rt.set_input("data", np.ones((4, 3), dtype=np.float32))
        >>> outputs, loss = rt.forward(with_loss=True)
    """

    def __init__(self, graph: Graph) -> None:
        self.graph = graph

    # -------------------------------------------------------------------------
    # Forward
    # -------------------------------------------------------------------------

    def forward_from_to(self, start: int, end: int) -> float:
        """Run units `start..end` (inclusive) and return their summed objective.

        Units outside the range are not touched. Upstream buffers keep whatever
        a previous run left in them; running dependencies first is the
        caller's job and is not checked here. An empty range (`start > end`
        with both bounds valid) runs nothing and returns 0.0.

        Raises:
            ExecutionRangeError: If `start < 0` or `end >= num_units`.
        """
        self._check_range(start, end)
        graph = self.graph
        loss = 0.0
        for i in range(start, end + 1):
            unit = graph.units[i]
            loss += unit.forward(graph.bottoms(i), graph.tops(i))
        return loss

    def forward_from(self, start: int) -> float:
        return self.forward_from_to(start, self.graph.num_units - 1)

    def forward_to(self, end: int) -> float:
        return self.forward_from_to(0, end)

    def forward(self, *, with_loss: bool = False) -> list[Buffer] | tuple[list[Buffer], float]:
        """Run the whole graph and return its output buffers.

        With `with_loss=True`, returns `(outputs, loss)` instead.
        """
        loss = self.forward_from_to(0, self.graph.num_units - 1)
        outputs = self.graph.output_buffers
        if with_loss:
            return outputs, loss
        return outputs

    def reshape(self) -> None:
        """Re-derive every top shape from the current bottom shapes, in order."""
        graph = self.graph
        for i, unit in enumerate(graph.units):
            unit.reshape(graph.bottoms(i), graph.tops(i))

    # -------------------------------------------------------------------------
    # Backward
    # -------------------------------------------------------------------------

    def backward_from_to(self, start: int, end: int) -> None:
        """Run backward for units `start` down to `end` (`start >= end`).

        Only units flagged as needing backward are visited.

        Raises:
            ExecutionRangeError: Unless `0 <= end <= start < num_units`.
        """
        if not 0 <= end <= start < self.graph.num_units:
            raise ExecutionRangeError(
                f"Backward range [{start}, {end}] must satisfy 0 <= end <= start < {self.graph.num_units}"
            )
        graph = self.graph
        for i in range(start, end - 1, -1):
            if graph.unit_need_backward[i]:
                graph.units[i].backward(graph.tops(i), graph.bottom_need_backward[i], graph.bottoms(i))

    def backward(self) -> None:
        self.backward_from_to(self.graph.num_units - 1, 0)

    def clear_param_diffs(self) -> None:
        for param in self.graph.learnable_params:
            param.diff[...] = 0

    # -------------------------------------------------------------------------
    # Buffer access
    # -------------------------------------------------------------------------

    def set_input(self, name: str, data: np.ndarray) -> None:
        """Copy `data` into buffer `name`, reshaping the buffer to match.

        Call `reshape()` afterwards if the shape changed.
        """
        buffer = self._require_buffer(name)
        arr = np.asarray(data, dtype=buffer.dtype.numpy)
        buffer.reshape(arr.shape)
        np.copyto(buffer.data, arr)

    def get_buffer(self, name: str) -> np.ndarray:
        return self._require_buffer(name).data

    def _require_buffer(self, name: str) -> Buffer:
        if not self.graph.has_buffer(name):
            raise KeyError(f"Buffer '{name}' not found in graph '{self.graph.name}'")
        return self.graph.buffer_by_name(name)

    def _check_range(self, start: int, end: int) -> None:
        if start < 0:
            raise ExecutionRangeError(f"start must be >= 0, got {start}")
        if end >= self.graph.num_units:
            raise ExecutionRangeError(
                f"end must be < {self.graph.num_units} (number of units), got {end}"
            )
