from .filtering import FilterPass, state_meets_rule, unit_is_included
from .splits import SplitInsertionPass, split_buffer_name, split_unit_name

__all__ = [
    "FilterPass",
    "state_meets_rule",
    "unit_is_included",
    "SplitInsertionPass",
    "split_unit_name",
    "split_buffer_name",
]
