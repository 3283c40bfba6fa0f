from __future__ import annotations

import logging
from dataclasses import dataclass

from unitgraph.ir import GraphDescription, Rule, RuleConflictError, RuntimeState, UnitSpec

logger = logging.getLogger(__name__)


def state_meets_rule(state: RuntimeState, rule: Rule, unit_name: str) -> bool:
    """Return True if `state` satisfies every condition set on `rule`.

    Checks run in a fixed order (phase, min level, max level, stages,
    not-stages) and stop at the first failure, which is logged.
    """
    if rule.phase is not None and rule.phase != state.phase:
        logger.info(
            "The runtime phase (%s) differed from the phase (%s) specified by a rule in unit %s",
            state.phase.value, rule.phase.value, unit_name,
        )
        return False
    if rule.min_level is not None and state.level < rule.min_level:
        logger.info(
            "The runtime level (%d) is below the min_level (%d) specified by a rule in unit %s",
            state.level, rule.min_level, unit_name,
        )
        return False
    if rule.max_level is not None and state.level > rule.max_level:
        logger.info(
            "The runtime level (%d) is above the max_level (%d) specified by a rule in unit %s",
            state.level, rule.max_level, unit_name,
        )
        return False
    for stage in rule.stages:
        if stage not in state.stages:
            logger.info(
                "The runtime state did not contain stage '%s' specified by a rule in unit %s",
                stage, unit_name,
            )
            return False
    for stage in rule.not_stages:
        if stage in state.stages:
            logger.info(
                "The runtime state contained a not_stage '%s' specified by a rule in unit %s",
                stage, unit_name,
            )
            return False
    return True


def unit_is_included(state: RuntimeState, unit: UnitSpec) -> bool:
    if unit.include and unit.exclude:
        raise RuleConflictError(
            f"Unit '{unit.name}' specifies both include and exclude rules; specify one or the other"
        )
    # No include rules: included unless an exclude rule is met.
    if not unit.include:
        return not any(state_meets_rule(state, rule, unit.name) for rule in unit.exclude)
    return any(state_meets_rule(state, rule, unit.name) for rule in unit.include)


@dataclass(slots=True)
class FilterPass:
    """Drops units whose include/exclude rules reject the description's state."""

    def run(self, description: GraphDescription) -> GraphDescription:
        state = description.state
        kept = [unit for unit in description.units if unit_is_included(state, unit)]
        return description.with_units(kept)
