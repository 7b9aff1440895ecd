"""
Dependency ordering for bulk replacement.

Backends without multi-key atomicity write a full data set one item (or one
small batch) at a time. Writing prerequisites before the flags that reference
them means a partially applied replace never exposes a flag whose
prerequisite is missing.
"""

from .models import DataKind, FullDataSet, ItemDescriptor

_VISITING = 1
_DONE = 2


def sort_all_collections(all_data: FullDataSet) -> FullDataSet:
    """
    Return a copy of all_data with kinds in priority order and, within each
    kind, every item placed after the items it depends on.

    Prerequisite keys that are not in the data set are skipped. A cycle is
    broken at the point where an item currently being visited is reached
    again; the item is treated as already satisfied.
    """
    result: FullDataSet = {}
    for kind in sorted(all_data, key=lambda k: k.priority):
        result[kind] = _sort_items(kind, all_data[kind])
    return result


def _sort_items(
    kind: DataKind,
    items: dict[str, ItemDescriptor],
) -> dict[str, ItemDescriptor]:
    ordered: dict[str, ItemDescriptor] = {}
    state: dict[str, int] = {}

    for root in items:
        if root in state:
            continue

        state[root] = _VISITING
        stack = [(root, iter(kind.get_dependency_keys(items[root])))]

        while stack:
            key, pending = stack[-1]
            for dep in pending:
                if dep not in items or dep in state:
                    # dangling reference, already written, or a cycle
                    continue
                state[dep] = _VISITING
                stack.append((dep, iter(kind.get_dependency_keys(items[dep]))))
                break
            else:
                stack.pop()
                state[key] = _DONE
                ordered[key] = items[key]

    return ordered
