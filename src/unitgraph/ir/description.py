"""Declarative graph description.

A description is plain data: an ordered list of unit records plus the runtime
state used to filter them. Nothing here touches tensors; the builder turns a
description into a live `Graph`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class Phase(str, Enum):
	TRAIN = "TRAIN"
	TEST = "TEST"


class ShareMode(str, Enum):
	"""How strictly a sharing parameter must match its owner."""

	STRICT = "STRICT"
	PERMISSIVE = "PERMISSIVE"


@dataclass(frozen=True, slots=True)
class RuntimeState:
	phase: Phase = Phase.TRAIN
	level: int = 0
	stages: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Rule:
	"""Predicate over a `RuntimeState`; `None` fields are not checked."""

	phase: Phase | None = None
	min_level: int | None = None
	max_level: int | None = None
	stages: tuple[str, ...] = ()
	not_stages: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ParamSpec:
	"""Per-slot parameter declaration.

	`lr_mult` and `decay_mult` are `None` when the description does not set
	them; the effective value is then 1.0.
	"""

	name: str = ""
	lr_mult: float | None = None
	decay_mult: float | None = None
	share_mode: ShareMode = ShareMode.STRICT


@dataclass(slots=True)
class UnitSpec:
	name: str
	type: str
	bottoms: list[str] = field(default_factory=list)
	tops: list[str] = field(default_factory=list)
	params: list[ParamSpec] = field(default_factory=list)
	include: list[Rule] = field(default_factory=list)
	exclude: list[Rule] = field(default_factory=list)
	propagate_down: list[bool] = field(default_factory=list)
	loss_weight: list[float] = field(default_factory=list)
	attrs: dict[str, Any] = field(default_factory=dict)

	def copy(self, **changes: Any) -> UnitSpec:
		fresh = replace(
			self,
			bottoms=list(self.bottoms),
			tops=list(self.tops),
			params=list(self.params),
			include=list(self.include),
			exclude=list(self.exclude),
			propagate_down=list(self.propagate_down),
			loss_weight=list(self.loss_weight),
			attrs=dict(self.attrs),
		)
		return replace(fresh, **changes) if changes else fresh


@dataclass(slots=True)
class GraphDescription:
	name: str = "graph"
	units: list[UnitSpec] = field(default_factory=list)
	state: RuntimeState = field(default_factory=RuntimeState)

	def with_units(self, units: list[UnitSpec]) -> GraphDescription:
		return GraphDescription(name=self.name, units=units, state=self.state)

	def unit(self, name: str, type: str, **kwargs: Any) -> UnitSpec:
		"""Append a unit record and return it (builder-style convenience)."""
		spec = UnitSpec(name=name, type=type, **kwargs)
		self.units.append(spec)
		return spec
