from __future__ import annotations


class GraphConfigError(ValueError):
	"""A graph description cannot be turned into a valid graph."""


class RuleConflictError(GraphConfigError):
	pass


class UnknownBufferError(GraphConfigError):
	pass


class DuplicateProducerError(GraphConfigError):
	pass


class ParamShareError(GraphConfigError):
	pass


class UnknownUnitTypeError(GraphConfigError):
	pass


class TransplantError(GraphConfigError):
	pass


class ExecutionRangeError(IndexError):
	"""Raised when a forward/backward range falls outside the unit list."""
