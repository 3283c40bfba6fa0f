from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

import numpy as np

from .dtypes import DType, float32


Shape = tuple[int, ...]


def as_shape(dims: Iterable[int]) -> Shape:
	return tuple(int(d) for d in dims)


def shape_string(shape: Shape) -> str:
	dims = " ".join(str(d) for d in shape)
	count = int(np.prod(shape, dtype=np.int64)) if shape else 1
	return f"{dims} ({count})" if dims else f"({count})"


@dataclass(eq=False)
class Buffer:
	"""A named tensor owned by a graph.

	Units never own buffers; they refer to them by index into the graph's
	buffer list. An in-place unit simply lists the same index as a bottom and a
	top, so both sides see the same `data` array.
	"""

	name: str
	dtype: DType = float32
	data: np.ndarray = field(default=None, repr=False)
	diff: np.ndarray = field(default=None, repr=False)
	need_backward: bool = False

	def __post_init__(self) -> None:
		if self.data is None:
			self.data = np.zeros((0,), dtype=self.dtype.numpy)
		if self.diff is None:
			self.diff = np.zeros_like(self.data)

	@property
	def shape(self) -> Shape:
		return tuple(self.data.shape)

	@property
	def rank(self) -> int:
		return self.data.ndim

	@property
	def count(self) -> int:
		return int(self.data.size)

	def reshape(self, shape: Iterable[int]) -> None:
		"""Change the logical shape, reallocating only if the element count changes."""
		shape = as_shape(shape)
		if shape == self.shape:
			return
		if int(np.prod(shape, dtype=np.int64)) == self.count:
			self.data = self.data.reshape(shape)
			self.diff = self.diff.reshape(shape)
		else:
			self.data = np.zeros(shape, dtype=self.dtype.numpy)
			self.diff = np.zeros(shape, dtype=self.dtype.numpy)

	def reshape_like(self, other: Buffer) -> None:
		self.reshape(other.shape)

	def __repr__(self) -> str:  # pragma: no cover
		return f"Buffer(name={self.name!r}, shape={self.shape}, dtype={self.dtype})"


@dataclass(eq=False)
class Parameter:
	"""A learnable blob attached to a unit.

	A sharing parameter holds views onto its owner's arrays, so writes through
	either side are visible to both.
	"""

	data: np.ndarray = field(repr=False)
	diff: np.ndarray = field(default=None, repr=False)

	def __post_init__(self) -> None:
		if self.diff is None:
			self.diff = np.zeros_like(self.data)

	@classmethod
	def zeros(cls, shape: Iterable[int], dtype: DType = float32) -> Parameter:
		return cls(data=np.zeros(as_shape(shape), dtype=dtype.numpy))

	@property
	def shape(self) -> Shape:
		return tuple(self.data.shape)

	@property
	def count(self) -> int:
		return int(self.data.size)

	def share_data(self, owner: Parameter) -> None:
		"""Alias the owner's storage, keeping this parameter's own shape."""
		self.data = owner.data.reshape(self.shape)
		self.diff = owner.diff.reshape(self.shape)

	def shares_memory_with(self, other: Parameter) -> bool:
		return np.shares_memory(self.data, other.data)
