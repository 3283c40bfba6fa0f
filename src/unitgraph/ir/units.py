from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Sequence

import numpy as np

from .description import UnitSpec
from .dtypes import DType, float32
from .errors import GraphConfigError, UnknownUnitTypeError
from .tensor import Buffer, Parameter, Shape, as_shape, shape_string


UNIT_REGISTRY: dict[str, type[Unit]] = {}


def register_unit(cls: type[Unit]) -> type[Unit]:
	"""Class decorator: make a unit type constructible by its `type_name`."""
	if not cls.type_name:
		raise ValueError(f"{cls.__name__} has no type_name")
	UNIT_REGISTRY[cls.type_name] = cls
	return cls


def create_unit(spec: UnitSpec, *, dtype: DType = float32, rng: np.random.Generator | None = None) -> Unit:
	cls = UNIT_REGISTRY.get(spec.type)
	if cls is None:
		raise UnknownUnitTypeError(
			f"Unknown unit type '{spec.type}' for unit '{spec.name}'. "
			f"Known types: {sorted(UNIT_REGISTRY)}"
		)
	if rng is None:
		rng = np.random.default_rng(0)
	return cls(spec=spec, dtype=dtype, rng=rng)


@dataclass(eq=False)
class Unit:
	"""Base class for graph units.

	A unit is configured once against its resolved buffers (`setup`), can
	re-derive top shapes from bottom shapes (`reshape`), and computes values
	(`forward`, optionally `backward`). Parameter blobs are created during
	`setup`; the builder decides afterwards which of them are shared.
	"""

	spec: UnitSpec
	dtype: DType = float32
	rng: np.random.Generator = field(default_factory=lambda: np.random.default_rng(0), repr=False)
	blobs: list[Parameter] = field(default_factory=list, repr=False)
	need_backward: bool = False
	loss_weights: list[float] = field(default_factory=list, init=False, repr=False)

	type_name: ClassVar[str] = ""
	exact_bottoms: ClassVar[int | None] = None
	min_bottoms: ClassVar[int] = 0
	exact_tops: ClassVar[int | None] = None
	min_tops: ClassVar[int] = 0
	default_loss_weight: ClassVar[float] = 0.0

	@property
	def name(self) -> str:
		return self.spec.name

	@property
	def kind(self) -> str:
		return self.type_name or self.__class__.__name__

	@property
	def attrs(self) -> dict[str, Any]:
		return self.spec.attrs

	def setup(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		self._check_counts(bottoms, tops)
		self.layer_setup(bottoms, tops)
		self.reshape(bottoms, tops)
		self._setup_loss_weights(tops)

	def layer_setup(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		pass

	def reshape(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		raise NotImplementedError

	def forward(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> float:
		"""Compute tops and return this unit's weighted objective contribution."""
		self.forward_impl(bottoms, tops)
		loss = 0.0
		for top, weight in zip(tops, self.loss_weights):
			if weight:
				loss += weight * float(top.data.sum())
				top.diff[...] = weight
		return loss

	def forward_impl(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		raise NotImplementedError

	def backward(self, tops: Sequence[Buffer], propagate_down: Sequence[bool], bottoms: Sequence[Buffer]) -> None:
		raise NotImplementedError(f"{self.kind} unit '{self.name}' does not implement backward")

	def _check_counts(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		if self.exact_bottoms is not None and len(bottoms) != self.exact_bottoms:
			raise GraphConfigError(
				f"{self.kind} unit '{self.name}' takes {self.exact_bottoms} bottom buffer(s), got {len(bottoms)}"
			)
		if len(bottoms) < self.min_bottoms:
			raise GraphConfigError(
				f"{self.kind} unit '{self.name}' takes at least {self.min_bottoms} bottom buffer(s), got {len(bottoms)}"
			)
		if self.exact_tops is not None and len(tops) != self.exact_tops:
			raise GraphConfigError(
				f"{self.kind} unit '{self.name}' produces {self.exact_tops} top buffer(s), got {len(tops)}"
			)
		if len(tops) < self.min_tops:
			raise GraphConfigError(
				f"{self.kind} unit '{self.name}' produces at least {self.min_tops} top buffer(s), got {len(tops)}"
			)

	def _setup_loss_weights(self, tops: Sequence[Buffer]) -> None:
		weights = [float(w) for w in self.spec.loss_weight]
		if not weights and self.default_loss_weight and tops:
			weights = [self.default_loss_weight] + [0.0] * (len(tops) - 1)
		if weights and len(weights) != len(tops):
			raise GraphConfigError(
				f"Unit '{self.name}' declares {len(weights)} loss weight(s) for {len(tops)} top buffer(s)"
			)
		self.loss_weights = weights


def _numel(shape: Shape) -> int:
	n = 1
	for dim in shape:
		n *= dim
	return n


@register_unit
@dataclass(eq=False)
class InputUnit(Unit):
	"""Declares graph inputs. `attrs["shape"]` is one shape, or one per top."""

	type_name: ClassVar[str] = "Input"
	exact_bottoms: ClassVar[int | None] = 0
	min_tops: ClassVar[int] = 1

	def _shapes(self, num_tops: int) -> list[Shape]:
		raw = self.attrs.get("shape")
		if raw is None:
			raise GraphConfigError(f"Input unit '{self.name}' needs a 'shape' attribute")
		raw = list(raw)
		if not raw or all(isinstance(d, (int, np.integer)) for d in raw):
			shapes = [as_shape(raw)]
		else:
			shapes = [as_shape(s) for s in raw]
		if len(shapes) == 1:
			return shapes * num_tops
		if len(shapes) != num_tops:
			raise GraphConfigError(
				f"Input unit '{self.name}' declares {len(shapes)} shapes for {num_tops} top buffer(s); "
				"give one shape or one per top"
			)
		return shapes

	def layer_setup(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		for top, shape in zip(tops, self._shapes(len(tops))):
			top.reshape(shape)

	def reshape(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		# Input shapes are set by the caller between runs.
		pass

	def forward_impl(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		pass

	def backward(self, tops: Sequence[Buffer], propagate_down: Sequence[bool], bottoms: Sequence[Buffer]) -> None:
		pass


@register_unit
@dataclass(eq=False)
class InnerProductUnit(Unit):
	"""Fully connected: flattens bottom from `axis` on, (M,K) @ (K,N) + bias."""

	type_name: ClassVar[str] = "InnerProduct"
	exact_bottoms: ClassVar[int | None] = 1
	exact_tops: ClassVar[int | None] = 1

	_k: int = field(default=0, init=False, repr=False)

	@property
	def axis(self) -> int:
		return int(self.attrs.get("axis", 1))

	@property
	def bias_term(self) -> bool:
		return bool(self.attrs.get("bias_term", True))

	def layer_setup(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		if "num_output" not in self.attrs:
			raise GraphConfigError(f"InnerProduct unit '{self.name}' needs a 'num_output' attribute")
		num_output = int(self.attrs["num_output"])
		self._k = _numel(bottoms[0].shape[self.axis:])
		std = float(self.attrs.get("weight_std", 0.01))
		weight = self.rng.normal(0.0, std, size=(num_output, self._k)).astype(self.dtype.numpy)
		self.blobs = [Parameter(data=weight)]
		if self.bias_term:
			self.blobs.append(Parameter.zeros((num_output,), self.dtype))

	def reshape(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		bottom = bottoms[0]
		k = _numel(bottom.shape[self.axis:])
		if k != self._k:
			raise GraphConfigError(
				f"InnerProduct unit '{self.name}': input size incompatible with parameters; "
				f"expected {self._k} features, bottom '{bottom.name}' has shape {shape_string(bottom.shape)}"
			)
		num_output = self.blobs[0].shape[0]
		tops[0].reshape(bottom.shape[:self.axis] + (num_output,))

	def forward_impl(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		x = bottoms[0].data.reshape(-1, self._k)
		y = x @ self.blobs[0].data.T
		if self.bias_term:
			y = y + self.blobs[1].data
		tops[0].data[...] = y.reshape(tops[0].shape)

	def backward(self, tops: Sequence[Buffer], propagate_down: Sequence[bool], bottoms: Sequence[Buffer]) -> None:
		x = bottoms[0].data.reshape(-1, self._k)
		dy = tops[0].diff.reshape(x.shape[0], -1)
		self.blobs[0].diff += dy.T @ x
		if self.bias_term:
			self.blobs[1].diff += dy.sum(axis=0)
		if propagate_down[0]:
			bottoms[0].diff[...] = (dy @ self.blobs[0].data).reshape(bottoms[0].shape)


@register_unit
@dataclass(eq=False)
class ReLUUnit(Unit):
	type_name: ClassVar[str] = "ReLU"
	exact_bottoms: ClassVar[int | None] = 1
	exact_tops: ClassVar[int | None] = 1

	@property
	def negative_slope(self) -> float:
		return float(self.attrs.get("negative_slope", 0.0))

	def reshape(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		tops[0].reshape_like(bottoms[0])

	def forward_impl(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		x = bottoms[0].data
		tops[0].data[...] = np.where(x > 0, x, x * self.negative_slope)

	def backward(self, tops: Sequence[Buffer], propagate_down: Sequence[bool], bottoms: Sequence[Buffer]) -> None:
		if not propagate_down[0]:
			return
		# In-place: bottom data already holds the activation, the sign is unchanged.
		mask = bottoms[0].data > 0
		bottoms[0].diff[...] = np.where(mask, tops[0].diff, tops[0].diff * self.negative_slope)


@register_unit
@dataclass(eq=False)
class EltwiseUnit(Unit):
	"""Elementwise SUM (with optional coeffs), PROD or MAX over same-shape bottoms."""

	type_name: ClassVar[str] = "Eltwise"
	min_bottoms: ClassVar[int] = 2
	exact_tops: ClassVar[int | None] = 1

	_argmax: np.ndarray | None = field(default=None, init=False, repr=False)

	@property
	def operation(self) -> str:
		return str(self.attrs.get("operation", "SUM")).upper()

	def layer_setup(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		if self.operation not in ("SUM", "PROD", "MAX"):
			raise GraphConfigError(f"Eltwise unit '{self.name}': unknown operation '{self.operation}'")
		coeffs = self.attrs.get("coeffs")
		if coeffs is not None:
			if self.operation != "SUM":
				raise GraphConfigError(f"Eltwise unit '{self.name}': coeffs are only valid for SUM")
			if len(coeffs) != len(bottoms):
				raise GraphConfigError(
					f"Eltwise unit '{self.name}' has {len(coeffs)} coeffs for {len(bottoms)} bottom buffer(s)"
				)

	def _coeffs(self, n: int) -> list[float]:
		coeffs = self.attrs.get("coeffs")
		return [float(c) for c in coeffs] if coeffs is not None else [1.0] * n

	def reshape(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		first = bottoms[0]
		for other in bottoms[1:]:
			if other.shape != first.shape:
				raise GraphConfigError(
					f"Eltwise unit '{self.name}' requires identical bottom shapes: "
					f"'{first.name}' is {shape_string(first.shape)}, '{other.name}' is {shape_string(other.shape)}"
				)
		tops[0].reshape_like(first)

	def forward_impl(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		stacked = np.stack([b.data for b in bottoms])
		if self.operation == "SUM":
			coeffs = np.asarray(self._coeffs(len(bottoms)), dtype=stacked.dtype)
			out = np.tensordot(coeffs, stacked, axes=1)
		elif self.operation == "PROD":
			out = np.prod(stacked, axis=0)
		else:
			self._argmax = np.argmax(stacked, axis=0)
			out = np.max(stacked, axis=0)
		tops[0].data[...] = out

	def backward(self, tops: Sequence[Buffer], propagate_down: Sequence[bool], bottoms: Sequence[Buffer]) -> None:
		# The top may alias a bottom; its diff is overwritten inside the loop.
		dy = tops[0].diff.copy()
		values = [b.data.copy() for b in bottoms]
		coeffs = self._coeffs(len(bottoms))
		for i, bottom in enumerate(bottoms):
			if not propagate_down[i]:
				continue
			if self.operation == "SUM":
				grad = coeffs[i] * dy
			elif self.operation == "PROD":
				others = [v for j, v in enumerate(values) if j != i]
				grad = dy * np.prod(np.stack(others), axis=0)
			else:
				grad = np.where(self._argmax == i, dy, 0)
			bottom.diff[...] = grad


@register_unit
@dataclass(eq=False)
class SplitUnit(Unit):
	"""Copies one bottom into every top; inserted to remove buffer fan-out."""

	type_name: ClassVar[str] = "Split"
	exact_bottoms: ClassVar[int | None] = 1
	min_tops: ClassVar[int] = 1

	def reshape(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		for top in tops:
			top.reshape_like(bottoms[0])

	def forward_impl(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		for top in tops:
			np.copyto(top.data, bottoms[0].data)

	def backward(self, tops: Sequence[Buffer], propagate_down: Sequence[bool], bottoms: Sequence[Buffer]) -> None:
		if propagate_down[0]:
			bottoms[0].diff[...] = sum(top.diff for top in tops)


@register_unit
@dataclass(eq=False)
class SoftmaxUnit(Unit):
	type_name: ClassVar[str] = "Softmax"
	exact_bottoms: ClassVar[int | None] = 1
	exact_tops: ClassVar[int | None] = 1

	@property
	def axis(self) -> int:
		return int(self.attrs.get("axis", 1))

	def reshape(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		tops[0].reshape_like(bottoms[0])

	def forward_impl(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		x = bottoms[0].data
		e = np.exp(x - x.max(axis=self.axis, keepdims=True))
		tops[0].data[...] = e / e.sum(axis=self.axis, keepdims=True)

	def backward(self, tops: Sequence[Buffer], propagate_down: Sequence[bool], bottoms: Sequence[Buffer]) -> None:
		if not propagate_down[0]:
			return
		y = tops[0].data
		dy = tops[0].diff
		bottoms[0].diff[...] = (dy - (dy * y).sum(axis=self.axis, keepdims=True)) * y


@register_unit
@dataclass(eq=False)
class EuclideanLossUnit(Unit):
	"""sum((a - b)^2) / (2 * batch); reports itself as an objective term."""

	type_name: ClassVar[str] = "EuclideanLoss"
	exact_bottoms: ClassVar[int | None] = 2
	exact_tops: ClassVar[int | None] = 1
	default_loss_weight: ClassVar[float] = 1.0

	_delta: np.ndarray | None = field(default=None, init=False, repr=False)

	def reshape(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		a, b = bottoms
		if a.count != b.count:
			raise GraphConfigError(
				f"EuclideanLoss unit '{self.name}': inputs must have the same count; "
				f"'{a.name}' is {shape_string(a.shape)}, '{b.name}' is {shape_string(b.shape)}"
			)
		tops[0].reshape(())

	def _batch(self, bottom: Buffer) -> int:
		return bottom.shape[0] if bottom.rank > 0 and bottom.shape[0] > 0 else 1

	def forward_impl(self, bottoms: Sequence[Buffer], tops: Sequence[Buffer]) -> None:
		a, b = bottoms
		self._delta = a.data - b.data.reshape(a.shape)
		tops[0].data[...] = float(np.sum(self._delta ** 2)) / self._batch(a) / 2.0

	def backward(self, tops: Sequence[Buffer], propagate_down: Sequence[bool], bottoms: Sequence[Buffer]) -> None:
		scale = float(tops[0].diff) / self._batch(bottoms[0])
		for i, bottom in enumerate(bottoms):
			if propagate_down[i]:
				sign = 1.0 if i == 0 else -1.0
				bottom.diff[...] = (sign * scale * self._delta).reshape(bottom.shape)
