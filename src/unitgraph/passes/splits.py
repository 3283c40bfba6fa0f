from __future__ import annotations

from dataclasses import dataclass

from unitgraph.ir import GraphDescription, UnitSpec


# (unit index, top index) of the unit that last wrote a buffer name
TopKey = tuple[int, int]


def split_unit_name(blob: str, producer: str, top_index: int) -> str:
    return f"{blob}_{producer}_{top_index}_split"


def split_buffer_name(blob: str, producer: str, top_index: int, split_index: int) -> str:
    return f"{blob}_{producer}_{top_index}_split_{split_index}"


@dataclass(slots=True)
class SplitInsertionPass:
    """Removes buffer fan-out by inserting explicit Split units.

    Every top consumed by more than one bottom gets a Split unit right after
    its producer; the k-th consumer is rewired to the k-th split output. An
    in-place unit that rewrites a name starts a new producer for that name, so
    consumers before and after it are counted separately.
    """

    split_type: str = "Split"

    def run(self, description: GraphDescription) -> GraphDescription:
        units = description.units

        # 1. Count consumers per producing (unit, top) and remember, for every
        # bottom, which producer it reads.
        producer_of: dict[str, TopKey] = {}
        bottom_source: dict[tuple[int, int], TopKey] = {}
        consumers: dict[TopKey, int] = {}
        for ui, unit in enumerate(units):
            for bi, name in enumerate(unit.bottoms):
                key = producer_of.get(name)
                if key is None:
                    # Unknown input; the builder reports it.
                    continue
                bottom_source[(ui, bi)] = key
                consumers[key] = consumers.get(key, 0) + 1
            for ti, name in enumerate(unit.tops):
                producer_of[name] = (ui, ti)

        if not any(n > 1 for n in consumers.values()):
            return description.with_units([u.copy() for u in units])

        # 2. Rebuild the unit list with rewired bottoms and Split units. An
        # in-place top follows its bottom onto the split copy, so later readers
        # of that top must use the rewritten name.
        next_split: dict[TopKey, int] = {}
        top_name: dict[TopKey, str] = {}
        rewritten: list[UnitSpec] = []
        for ui, unit in enumerate(units):
            bottoms = list(unit.bottoms)
            renamed: dict[str, str] = {}
            for bi, name in enumerate(unit.bottoms):
                key = bottom_source.get((ui, bi))
                if key is None:
                    continue
                actual = top_name.get(key, name)
                if consumers[key] > 1:
                    k = next_split.get(key, 0)
                    next_split[key] = k + 1
                    actual = split_buffer_name(actual, units[key[0]].name, key[1], k)
                if actual != name:
                    bottoms[bi] = actual
                    renamed[name] = actual
            tops = [renamed.get(name, name) for name in unit.tops]
            for ti, name in enumerate(tops):
                top_name[(ui, ti)] = name
            rewritten.append(unit.copy(bottoms=bottoms, tops=tops))

            for ti, name in enumerate(tops):
                count = consumers.get((ui, ti), 0)
                if count <= 1:
                    continue
                rewritten.append(UnitSpec(
                    name=split_unit_name(name, unit.name, ti),
                    type=self.split_type,
                    bottoms=[name],
                    tops=[split_buffer_name(name, unit.name, ti, k) for k in range(count)],
                ))

        return description.with_units(rewritten)
