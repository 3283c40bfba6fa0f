"""Copying learned parameters between graphs.

Source weights come as an ordered list of `SerializedUnit` records (unit name
plus its parameter arrays in slot order). Reading them from disk is left to
the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable

import numpy as np

from unitgraph.ir import TransplantError
from unitgraph.ir.tensor import shape_string

if TYPE_CHECKING:
    from unitgraph.ir import Graph

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SerializedUnit:
    name: str
    blobs: list[np.ndarray] = field(default_factory=list)


def copy_trained_units_from(graph: Graph, source: Iterable[SerializedUnit]) -> list[str]:
    """Copy parameter values from `source` into the units of `graph` with the same name.

    Values are written in place, so parameters sharing storage with a target
    slot see the new values too. Source units with no live counterpart are
    skipped; live units with no source keep their current values.

    Returns:
        Names of the live units that received weights.

    Raises:
        TransplantError: On a blob count or shape mismatch for a matched unit.
    """
    copied: list[str] = []
    for source_unit in source:
        target_id = graph.unit_index(source_unit.name)
        if target_id is None:
            logger.info("Ignoring source unit %s", source_unit.name)
            continue
        logger.debug("Copying source unit %s", source_unit.name)
        target_blobs = graph.units[target_id].blobs
        if len(target_blobs) != len(source_unit.blobs):
            raise TransplantError(
                f"Incompatible number of blobs for unit {source_unit.name}: "
                f"source has {len(source_unit.blobs)}, target has {len(target_blobs)}"
            )
        # Check every slot before writing any, so a failure leaves the unit untouched.
        arrays = [np.asarray(blob) for blob in source_unit.blobs]
        for j, (target, array) in enumerate(zip(target_blobs, arrays)):
            if target.shape != tuple(array.shape):
                raise TransplantError(
                    f"Cannot copy param {j} weights from unit '{source_unit.name}'; shape mismatch. "
                    f"Source param shape is {shape_string(tuple(array.shape))}; "
                    f"target param shape is {shape_string(target.shape)}. "
                    "To learn this unit's parameters from scratch rather than copying from a "
                    "saved graph, rename the unit."
                )
        for target, array in zip(target_blobs, arrays):
            np.copyto(target.data, array, casting="same_kind")
        copied.append(source_unit.name)
    return copied


def export_trained_units(graph: Graph) -> list[SerializedUnit]:
    """Snapshot every unit's parameters (copied) in unit order."""
    return [
        SerializedUnit(name=unit.name, blobs=[param.data.copy() for param in unit.blobs])
        for unit in graph.units
    ]
