import logging

import pytest

from unitgraph.ir import GraphDescription, Phase, Rule, RuleConflictError, RuntimeState
from unitgraph.passes import FilterPass, state_meets_rule


# =============================================================================
# 1. Rule evaluation
# =============================================================================


class TestStateMeetsRule:
    def test_empty_rule_always_met(self):
        assert state_meets_rule(RuntimeState(), Rule(), "u")

    def test_phase(self):
        state = RuntimeState(phase=Phase.TEST)
        assert state_meets_rule(state, Rule(phase=Phase.TEST), "u")
        assert not state_meets_rule(state, Rule(phase=Phase.TRAIN), "u")

    def test_levels(self):
        state = RuntimeState(level=2)
        assert not state_meets_rule(state, Rule(min_level=3), "u")
        assert not state_meets_rule(state, Rule(max_level=1), "u")
        assert state_meets_rule(state, Rule(min_level=1, max_level=2), "u")

    def test_stages_must_all_be_active(self):
        state = RuntimeState(stages=("a", "b"))
        assert state_meets_rule(state, Rule(stages=("a", "b")), "u")
        assert not state_meets_rule(state, Rule(stages=("a", "c")), "u")

    def test_not_stages_must_all_be_inactive(self):
        state = RuntimeState(stages=("a", "b"))
        assert state_meets_rule(state, Rule(not_stages=("c",)), "u")
        assert not state_meets_rule(state, Rule(not_stages=("c", "b")), "u")

    def test_first_failing_condition_is_reported(self, caplog):
        state = RuntimeState(phase=Phase.TEST, level=0)
        rule = Rule(phase=Phase.TRAIN, min_level=5)
        with caplog.at_level(logging.INFO, logger="unitgraph.passes.filtering"):
            assert not state_meets_rule(state, rule, "fc7")
        assert "phase" in caplog.text
        assert "fc7" in caplog.text
        assert "min_level" not in caplog.text


# =============================================================================
# 2. Graph filtering
# =============================================================================


def _description(state: RuntimeState) -> GraphDescription:
    d = GraphDescription(name="filter", state=state)
    d.unit("data", "Input", tops=["x"], attrs={"shape": [1, 2]})
    d.unit("train_only", "ReLU", bottoms=["x"], tops=["a"], include=[Rule(phase=Phase.TRAIN)])
    d.unit("plain", "ReLU", bottoms=["x"], tops=["b"])
    d.unit("not_test", "ReLU", bottoms=["x"], tops=["c"], exclude=[Rule(phase=Phase.TEST)])
    return d


def test_filter_test_phase() -> None:
    filtered = FilterPass().run(_description(RuntimeState(phase=Phase.TEST)))
    assert [u.name for u in filtered.units] == ["data", "plain"]


def test_filter_train_phase_keeps_order() -> None:
    filtered = FilterPass().run(_description(RuntimeState(phase=Phase.TRAIN)))
    assert [u.name for u in filtered.units] == ["data", "train_only", "plain", "not_test"]


def test_filter_keeps_state_and_name() -> None:
    state = RuntimeState(phase=Phase.TEST, level=3, stages=("deploy",))
    filtered = FilterPass().run(_description(state))
    assert filtered.state == state
    assert filtered.name == "filter"


def test_any_include_rule_admits() -> None:
    d = GraphDescription(state=RuntimeState(phase=Phase.TEST))
    d.unit(
        "either", "Input", tops=["x"], attrs={"shape": [1]},
        include=[Rule(phase=Phase.TRAIN), Rule(stages=("missing",)), Rule(phase=Phase.TEST)],
    )
    assert [u.name for u in FilterPass().run(d).units] == ["either"]


def test_stage_based_exclusion() -> None:
    d = GraphDescription(state=RuntimeState(stages=("deploy",)))
    d.unit("data", "Input", tops=["x"], attrs={"shape": [1]})
    d.unit("aux", "ReLU", bottoms=["x"], tops=["y"], exclude=[Rule(stages=("deploy",))])
    assert [u.name for u in FilterPass().run(d).units] == ["data"]


def test_include_and_exclude_conflict() -> None:
    d = GraphDescription()
    d.unit(
        "both", "ReLU", bottoms=["x"], tops=["y"],
        include=[Rule(phase=Phase.TRAIN)], exclude=[Rule(phase=Phase.TEST)],
    )
    with pytest.raises(RuleConflictError, match="both"):
        FilterPass().run(d)
