from .description import GraphDescription, ParamSpec, Phase, Rule, RuntimeState, ShareMode, UnitSpec
from .dtypes import DType, float32, float64
from .errors import (
	DuplicateProducerError,
	ExecutionRangeError,
	GraphConfigError,
	ParamShareError,
	RuleConflictError,
	TransplantError,
	UnknownBufferError,
	UnknownUnitTypeError,
)
from .graph import Graph
from .tensor import Buffer, Parameter
from .units import UNIT_REGISTRY, Unit, create_unit, register_unit

__all__ = [
	"DType",
	"float32",
	"float64",
	"Buffer",
	"Parameter",
	"Phase",
	"ShareMode",
	"RuntimeState",
	"Rule",
	"ParamSpec",
	"UnitSpec",
	"GraphDescription",
	"Unit",
	"UNIT_REGISTRY",
	"register_unit",
	"create_unit",
	"Graph",
	"GraphConfigError",
	"RuleConflictError",
	"UnknownBufferError",
	"DuplicateProducerError",
	"ParamShareError",
	"UnknownUnitTypeError",
	"TransplantError",
	"ExecutionRangeError",
]
