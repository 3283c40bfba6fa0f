"""unitgraph: build and run unit graphs from declarative descriptions.

A description lists units with named bottom/top buffers, parameter specs and
include/exclude rules. The builder filters it by runtime state, removes
fan-out with Split units and resolves buffers and shared parameters into a
`Graph`; `Runtime` executes it and `copy_trained_units_from` loads weights.
"""

from .builder import GraphBuilder, GraphConfig, build_graph
from .ir import (
    Buffer,
    DType,
    Graph,
    GraphConfigError,
    GraphDescription,
    Parameter,
    ParamSpec,
    Phase,
    Rule,
    RuntimeState,
    ShareMode,
    UnitSpec,
    float32,
)
from .runtime import Runtime
from .weights import SerializedUnit, copy_trained_units_from, export_trained_units

__all__ = [
    "DType",
    "float32",
    "Buffer",
    "Parameter",
    "Phase",
    "ShareMode",
    "RuntimeState",
    "Rule",
    "ParamSpec",
    "UnitSpec",
    "GraphDescription",
    "Graph",
    "GraphConfigError",
    "GraphBuilder",
    "GraphConfig",
    "build_graph",
    "Runtime",
    "SerializedUnit",
    "copy_trained_units_from",
    "export_trained_units",
]
