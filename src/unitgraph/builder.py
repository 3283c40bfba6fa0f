"""GraphBuilder: turns a GraphDescription into a live Graph.

The build is a single pass over the (filtered, split-resolved) unit list in
declared order:
1. Resolve each bottom against the buffers produced so far.
2. Resolve each top: in-place alias, duplicate producer (error), or a fresh
   buffer.
3. Set the unit up against its resolved buffers and account memory.
4. Resolve parameter ownership and sharing.
5. Propagate the need for backward computation to the unit's tops.

Any inconsistency raises a `GraphConfigError` subclass; there is no partial
graph.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from unitgraph.ir import (
    Buffer,
    DType,
    DuplicateProducerError,
    Graph,
    GraphConfigError,
    GraphDescription,
    ParamShareError,
    ParamSpec,
    ShareMode,
    UnitSpec,
    UnknownBufferError,
    create_unit,
    float32,
)
from unitgraph.ir.tensor import shape_string
from unitgraph.ir.units import Unit
from unitgraph.passes import FilterPass, SplitInsertionPass

logger = logging.getLogger(__name__)

INPUT_UNIT_TYPE = "Input"


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True, slots=True)
class GraphConfig:
    """Build-time configuration.

    Attributes:
        dtype: Storage dtype for buffers and parameters.
        seed: Seed for the parameter filler RNG; equal seeds give equal graphs.
        insert_splits: Run `SplitInsertionPass` before building. Disable only
                       for descriptions that are already free of fan-out.
        force_backward: Mark every unit as needing backward.
    """

    dtype: DType = float32
    seed: int = 0
    insert_splits: bool = True
    force_backward: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.dtype, DType):
            raise TypeError(f"dtype must be a DType, got {type(self.dtype).__name__}")
        if self.seed < 0:
            raise ValueError(f"seed must be non-negative, got {self.seed}")


# =============================================================================
# Builder
# =============================================================================


@dataclass
class _BuildState:
    """Accumulators that only live for the duration of one build."""

    blob_name_to_idx: dict[str, int] = field(default_factory=dict)
    # Ordered set: produced and not yet consumed.
    available: dict[str, None] = field(default_factory=dict)
    unit_names: set[str] = field(default_factory=set)
    memory_used: int = 0


@dataclass
class GraphBuilder:
    config: GraphConfig = field(default_factory=GraphConfig)

    def build(self, description: GraphDescription) -> Graph:
        """Filter, split and build `description`.

        Raises:
            GraphConfigError: If the description is inconsistent.
        """
        resolved = FilterPass().run(description)
        if self.config.insert_splits:
            resolved = SplitInsertionPass().run(resolved)

        graph = Graph(name=resolved.name, dtype=self.config.dtype)
        state = _BuildState()
        rng = np.random.default_rng(self.config.seed)

        for unit_id, spec in enumerate(resolved.units):
            self._build_unit(graph, state, unit_id, spec, rng)

        # Whatever was never consumed is a graph output.
        for name in state.available:
            logger.info("This graph produces output %s", name)
            graph.output_buffer_indices.append(state.blob_name_to_idx[name])

        graph.memory_used = state.memory_used
        graph.finalize_indices()
        logger.info("Graph initialization done.")
        return graph

    def _build_unit(
        self,
        graph: Graph,
        state: _BuildState,
        unit_id: int,
        spec: UnitSpec,
        rng: np.random.Generator,
    ) -> None:
        if spec.name in state.unit_names:
            raise GraphConfigError(f"Duplicate unit name '{spec.name}'")
        state.unit_names.add(spec.name)

        unit = create_unit(spec, dtype=self.config.dtype, rng=rng)
        graph.units.append(unit)
        graph.unit_names.append(spec.name)
        graph.bottom_id_vecs.append([])
        graph.top_id_vecs.append([])
        graph.bottom_need_backward.append([])
        graph.param_id_vecs.append([])
        logger.info("Creating unit %s", spec.name)

        need_backward = False
        for bottom_id in range(len(spec.bottoms)):
            need_backward |= self._append_bottom(graph, state, unit_id, spec, bottom_id)

        for top_id in range(len(spec.tops)):
            blob_id = self._append_top(graph, state, unit_id, spec, top_id)
            if spec.type == INPUT_UNIT_TYPE:
                graph.input_buffer_indices.append(blob_id)

        bottoms = graph.bottoms(unit_id)
        tops = graph.tops(unit_id)
        logger.info("Setting up %s", spec.name)
        unit.setup(bottoms, tops)
        for top in tops:
            logger.info("Top shape: %s", shape_string(top.shape))
            state.memory_used += top.count
        logger.info("Memory required for data: %d", state.memory_used * self.config.dtype.itemsize)

        if len(spec.params) > len(unit.blobs):
            raise GraphConfigError(
                f"Too many params specified for unit '{spec.name}': "
                f"{len(spec.params)} specs for {len(unit.blobs)} parameter blob(s)"
            )
        for param_id in range(len(unit.blobs)):
            need_backward |= self._append_param(graph, unit, unit_id, param_id)

        need_backward |= self.config.force_backward
        unit.need_backward = need_backward
        graph.unit_need_backward.append(need_backward)
        if need_backward:
            logger.info("%s needs backward computation.", spec.name)
            for top in tops:
                top.need_backward = True
        else:
            logger.info("%s does not need backward computation.", spec.name)

    def _append_bottom(
        self,
        graph: Graph,
        state: _BuildState,
        unit_id: int,
        spec: UnitSpec,
        bottom_id: int,
    ) -> bool:
        """Wire one bottom; return True if it makes the unit need backward."""
        name = spec.bottoms[bottom_id]
        if name not in state.available:
            raise UnknownBufferError(
                f"Unknown bottom buffer '{name}' (unit '{spec.name}', bottom index {bottom_id})"
            )
        blob_id = state.blob_name_to_idx[name]
        logger.info("%s <- %s", spec.name, name)
        graph.bottom_id_vecs[unit_id].append(blob_id)
        del state.available[name]

        produced = graph.buffers[blob_id].need_backward
        # Indices past the declared override list inherit from the buffer.
        if bottom_id < len(spec.propagate_down):
            propagate = bool(spec.propagate_down[bottom_id])
            graph.bottom_need_backward[unit_id].append(propagate)
            return produced and propagate
        graph.bottom_need_backward[unit_id].append(produced)
        return produced

    def _append_top(
        self,
        graph: Graph,
        state: _BuildState,
        unit_id: int,
        spec: UnitSpec,
        top_id: int,
    ) -> int:
        name = spec.tops[top_id]
        if name in spec.bottoms:
            logger.info("%s -> %s (in-place)", spec.name, name)
            blob_id = state.blob_name_to_idx[name]
        elif name in state.blob_name_to_idx:
            raise DuplicateProducerError(
                f"Top buffer '{name}' produced by multiple sources (unit '{spec.name}', top index {top_id})"
            )
        else:
            logger.info("%s -> %s", spec.name, name)
            blob_id = len(graph.buffers)
            graph.buffers.append(Buffer(name=name, dtype=self.config.dtype))
            graph.buffer_names.append(name)
            state.blob_name_to_idx[name] = blob_id
        graph.top_id_vecs[unit_id].append(blob_id)
        state.available[name] = None
        return blob_id

    def _append_param(self, graph: Graph, unit: Unit, unit_id: int, param_id: int) -> bool:
        """Register one parameter slot; return True if the slot is trainable (owned or shared)."""
        spec = unit.spec
        param_spec = spec.params[param_id] if param_id < len(spec.params) else ParamSpec()
        param_name = param_spec.name
        graph.param_display_names.append(param_name or str(param_id))

        net_param_id = len(graph.params)
        graph.params.append(unit.blobs[param_id])
        graph.param_id_vecs[unit_id].append(net_param_id)
        graph.param_unit_indices.append((unit_id, param_id))

        if not param_name or param_name not in graph.param_names_index:
            # Anonymous, or a name we have not seen: this unit owns the blob.
            graph.param_owners.append(-1)
            if param_name:
                graph.param_names_index[param_name] = net_param_id
            learnable_id = len(graph.learnable_params)
            graph.learnable_params.append(graph.params[net_param_id])
            graph.learnable_param_ids.append(learnable_id)
            graph.has_params_lr.append(param_spec.lr_mult is not None)
            graph.has_params_decay.append(param_spec.decay_mult is not None)
            graph.params_lr.append(1.0 if param_spec.lr_mult is None else float(param_spec.lr_mult))
            graph.params_weight_decay.append(
                1.0 if param_spec.decay_mult is None else float(param_spec.decay_mult)
            )
            return graph.params_lr[learnable_id] != 0

        owner_net_id = graph.param_names_index[param_name]
        graph.param_owners.append(owner_net_id)
        owner_unit_id, owner_param_id = graph.param_unit_indices[owner_net_id]
        owner_name = graph.unit_names[owner_unit_id]
        logger.info(
            "Sharing parameters '%s' owned by unit '%s', param index %d",
            param_name, owner_name, owner_param_id,
        )
        this_blob = unit.blobs[param_id]
        owner_blob = graph.units[owner_unit_id].blobs[owner_param_id]
        if param_spec.share_mode is ShareMode.PERMISSIVE:
            if this_blob.count != owner_blob.count:
                raise ParamShareError(
                    f"Cannot share param '{param_name}' owned by unit '{owner_name}' with unit "
                    f"'{spec.name}'; count mismatch. Owner unit param shape is "
                    f"{shape_string(owner_blob.shape)}; sharing unit shape is {shape_string(this_blob.shape)}"
                )
        elif this_blob.shape != owner_blob.shape:
            raise ParamShareError(
                f"Cannot share param '{param_name}' owned by unit '{owner_name}' with unit "
                f"'{spec.name}'; shape mismatch. Owner unit param shape is "
                f"{shape_string(owner_blob.shape)}; sharing unit expects shape {shape_string(this_blob.shape)}"
            )
        this_blob.share_data(owner_blob)

        learnable_id = graph.learnable_param_ids[owner_net_id]
        graph.learnable_param_ids.append(learnable_id)
        if param_spec.lr_mult is not None:
            if graph.has_params_lr[learnable_id]:
                if float(param_spec.lr_mult) != graph.params_lr[learnable_id]:
                    raise ParamShareError(
                        f"Shared param '{param_name}' has mismatched lr_mult: unit '{spec.name}' "
                        f"declares {param_spec.lr_mult}, owner unit '{owner_name}' has "
                        f"{graph.params_lr[learnable_id]}"
                    )
            else:
                graph.has_params_lr[learnable_id] = True
                graph.params_lr[learnable_id] = float(param_spec.lr_mult)
        if param_spec.decay_mult is not None:
            if graph.has_params_decay[learnable_id]:
                if float(param_spec.decay_mult) != graph.params_weight_decay[learnable_id]:
                    raise ParamShareError(
                        f"Shared param '{param_name}' has mismatched decay_mult: unit '{spec.name}' "
                        f"declares {param_spec.decay_mult}, owner unit '{owner_name}' has "
                        f"{graph.params_weight_decay[learnable_id]}"
                    )
            else:
                graph.has_params_decay[learnable_id] = True
                graph.params_weight_decay[learnable_id] = float(param_spec.decay_mult)
        return graph.params_lr[learnable_id] != 0


def build_graph(description: GraphDescription, config: GraphConfig | None = None) -> Graph:
    """Convenience wrapper: `GraphBuilder(config).build(description)`."""
    return GraphBuilder(config or GraphConfig()).build(description)
