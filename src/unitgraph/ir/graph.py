from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .dtypes import DType, float32
from .tensor import Buffer, Parameter, shape_string
from .units import Unit

logger = logging.getLogger(__name__)


@dataclass
class Graph:
	"""A built, executable unit graph.

	Design choices (on purpose):
	- Units are stored in execution order; that order is a valid topological
	  order of the buffer dependencies.
	- Buffers live in one flat list. Units refer to them only through the
	  per-unit `bottom_id_vecs` / `top_id_vecs` index lists.
	- Parameter bookkeeping mirrors the buffer side: `params` holds every slot,
	  `learnable_params` only the owners; sharers point at their owner through
	  `param_owners` and `learnable_param_ids`.

	Graphs are produced by `GraphBuilder`; this class is the read side.
	"""

	name: str = "graph"
	dtype: DType = float32

	units: list[Unit] = field(default_factory=list)
	unit_names: list[str] = field(default_factory=list)
	unit_need_backward: list[bool] = field(default_factory=list)

	buffers: list[Buffer] = field(default_factory=list)
	buffer_names: list[str] = field(default_factory=list)

	bottom_id_vecs: list[list[int]] = field(default_factory=list)
	top_id_vecs: list[list[int]] = field(default_factory=list)
	bottom_need_backward: list[list[bool]] = field(default_factory=list)

	input_buffer_indices: list[int] = field(default_factory=list)
	output_buffer_indices: list[int] = field(default_factory=list)

	params: list[Parameter] = field(default_factory=list)
	param_id_vecs: list[list[int]] = field(default_factory=list)
	param_owners: list[int] = field(default_factory=list)
	param_display_names: list[str] = field(default_factory=list)
	param_unit_indices: list[tuple[int, int]] = field(default_factory=list)
	param_names_index: dict[str, int] = field(default_factory=dict)
	learnable_params: list[Parameter] = field(default_factory=list)
	learnable_param_ids: list[int] = field(default_factory=list)
	params_lr: list[float] = field(default_factory=list)
	has_params_lr: list[bool] = field(default_factory=list)
	params_weight_decay: list[float] = field(default_factory=list)
	has_params_decay: list[bool] = field(default_factory=list)

	memory_used: int = 0

	_buffer_index: dict[str, int] = field(default_factory=dict, repr=False)
	_unit_index: dict[str, int] = field(default_factory=dict, repr=False)

	def finalize_indices(self) -> None:
		self._buffer_index = {name: i for i, name in enumerate(self.buffer_names)}
		self._unit_index = {}
		for i, name in enumerate(self.unit_names):
			self._unit_index.setdefault(name, i)

	# -------------------------------------------------------------------------
	# Lookups
	# -------------------------------------------------------------------------

	def has_buffer(self, name: str) -> bool:
		return name in self._buffer_index

	def buffer_by_name(self, name: str) -> Buffer | None:
		idx = self._buffer_index.get(name)
		if idx is None:
			logger.warning("Unknown buffer name %s", name)
			return None
		return self.buffers[idx]

	def has_unit(self, name: str) -> bool:
		return name in self._unit_index

	def unit_by_name(self, name: str) -> Unit | None:
		idx = self._unit_index.get(name)
		if idx is None:
			logger.warning("Unknown unit name %s", name)
			return None
		return self.units[idx]

	def unit_index(self, name: str) -> int | None:
		return self._unit_index.get(name)

	def bottom_ids(self, unit_id: int) -> list[int]:
		self._check_unit_id(unit_id)
		return self.bottom_id_vecs[unit_id]

	def top_ids(self, unit_id: int) -> list[int]:
		self._check_unit_id(unit_id)
		return self.top_id_vecs[unit_id]

	def bottoms(self, unit_id: int) -> list[Buffer]:
		return [self.buffers[i] for i in self.bottom_ids(unit_id)]

	def tops(self, unit_id: int) -> list[Buffer]:
		return [self.buffers[i] for i in self.top_ids(unit_id)]

	def _check_unit_id(self, unit_id: int) -> None:
		if not 0 <= unit_id < len(self.units):
			raise IndexError(f"Invalid unit id {unit_id}; graph has {len(self.units)} units")

	# -------------------------------------------------------------------------
	# Aggregates
	# -------------------------------------------------------------------------

	@property
	def input_buffers(self) -> list[Buffer]:
		return [self.buffers[i] for i in self.input_buffer_indices]

	@property
	def output_buffers(self) -> list[Buffer]:
		return [self.buffers[i] for i in self.output_buffer_indices]

	@property
	def num_inputs(self) -> int:
		return len(self.input_buffer_indices)

	@property
	def num_outputs(self) -> int:
		return len(self.output_buffer_indices)

	@property
	def memory_bytes(self) -> int:
		return self.memory_used * self.dtype.itemsize

	@property
	def num_units(self) -> int:
		return len(self.units)

	def summary(self) -> str:
		lines: list[str] = [
			f"Graph(name={self.name!r}, units={len(self.units)}, buffers={len(self.buffers)}, "
			f"params={len(self.params)}, learnable={len(self.learnable_params)})"
		]
		for i, unit in enumerate(self.units):
			ins = ", ".join(f"{b.name}:{b.shape}" for b in self.bottoms(i))
			outs = ", ".join(f"{t.name}:{t.shape}" for t in self.tops(i))
			back = " [backward]" if self.unit_need_backward[i] else ""
			lines.append(f"- {unit.name}: {unit.kind}({ins}) -> {outs}{back}")
		for pid, param in enumerate(self.params):
			owner = self.param_owners[pid]
			uid, slot = self.param_unit_indices[pid]
			shared = "" if owner < 0 else f" shares #{owner}"
			lines.append(
				f"  param #{pid} {self.unit_names[uid]}[{slot}] "
				f"'{self.param_display_names[pid]}': {shape_string(param.shape)}{shared}"
			)
		return "\n".join(lines)
