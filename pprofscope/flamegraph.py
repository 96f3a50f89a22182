"""Conversion of profile samples into a hierarchical flame graph."""

from __future__ import annotations

from dataclasses import dataclass, field

from pprofscope.formatters import format_bytes, format_sample_value
from pprofscope.types import (
    AnalysisError,
    FlameGraphNode,
    Function,
    Profile,
    Sample,
)

_MEMORY_VALUE_TYPES = frozenset({"inuse_space", "alloc_space", "alloc", "allocation"})
_OBJECT_VALUE_TYPES = frozenset({"inuse_objects", "alloc_objects"})


@dataclass
class _TempNode:
    node: FlameGraphNode
    children: dict[int, _TempNode] = field(default_factory=dict)
    self_value: int = 0
    object_count: int = 0
    file_path: str = ""
    line_num: int = 0
    object_type: str = ""


def _div_trunc(a: int, b: int) -> int:
    """Integer division rounding toward zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def _sample_type_name(sample: Sample) -> str:
    for key in ("type", "object"):
        values = sample.labels.get(key)
        if values:
            return values[0]
    return ""


def build_flame_graph_tree(profile: Profile, value_index: int) -> FlameGraphNode:
    """Build a flame graph rooted at "root" from the given sample value column.

    Frames are aggregated by function id along each call path.
    """
    count = len(profile.sample_types)
    if not 0 <= value_index < count:
        raise AnalysisError(
            f"invalid value index {value_index} for profile with {count} sample types"
        )

    selected = profile.sample_types[value_index]
    value_unit = selected.unit
    is_memory = value_unit == "bytes" and selected.type in _MEMORY_VALUE_TYPES
    objects_index = -1
    if is_memory:
        objects_index = next(
            (
                i
                for i, st in enumerate(profile.sample_types)
                if st.type in _OBJECT_VALUE_TYPES and st.unit == "count"
            ),
            -1,
        )

    root = _TempNode(FlameGraphNode(name="root"))
    total_value = 0
    total_objects = 0

    for sample in profile.samples:
        value = sample.values[value_index]
        if value == 0:
            continue
        total_value += value

        obj_count = 0
        if is_memory and 0 <= objects_index < len(sample.values):
            obj_count = sample.values[objects_index]
            total_objects += obj_count

        type_name = _sample_type_name(sample) if is_memory else ""

        current = root
        for index in range(len(sample.locations) - 1, -1, -1):
            location = sample.locations[index]
            if not location.lines:
                continue
            line = location.lines[0]
            fn = line.function or Function(id=0, name=f"unknown @ 0x{location.address:x}")

            child = current.children.get(fn.id)
            if child is None:
                child = _TempNode(
                    FlameGraphNode(name=fn.name, file_path=fn.filename, line_num=line.line),
                    file_path=fn.filename,
                    line_num=line.line,
                    object_type=type_name,
                )
                current.children[fn.id] = child

            if index == 0:
                child.self_value += value
                if is_memory and obj_count > 0:
                    child.object_count += obj_count
                    if type_name and not child.object_type:
                        child.object_type = type_name

            current = child

    _finalize(root, is_memory, value_unit)

    node = root.node
    node.value = total_value
    if is_memory:
        node.value_formatted = format_bytes(total_value)
        if total_objects > 0:
            node.object_count = total_objects
            node.avg_size = _div_trunc(total_value, total_objects)
            node.avg_size_formatted = format_bytes(node.avg_size)
    elif value_unit == "nanoseconds":
        node.value_formatted = format_sample_value(total_value, value_unit)

    _sort_children_by_value(node)
    return node


def _finalize(temp: _TempNode, is_memory: bool, value_unit: str) -> int:
    """Fill in totals below ``temp`` and return its own total value."""
    total = temp.self_value
    kept: list[FlameGraphNode] = []

    for child in temp.children.values():
        child_total = _finalize(child, is_memory, value_unit)
        node = child.node
        node.value = child_total
        node.self_value = child.self_value

        if is_memory:
            node.value_formatted = format_bytes(child_total)
            node.object_count = child.object_count
            if child.object_count > 0:
                node.avg_size = _div_trunc(child_total, child.object_count)
                node.avg_size_formatted = format_bytes(node.avg_size)
            if child.object_type:
                node.type = child.object_type
        elif value_unit == "nanoseconds":
            node.value_formatted = format_sample_value(child_total, value_unit)

        if child.file_path:
            node.file_path = child.file_path
        if child.line_num > 0:
            node.line_num = child.line_num

        if child_total > 0:
            kept.append(node)
        total += child_total

    temp.node.children = kept
    temp.node.self_value = temp.self_value
    return total


def _sort_children_by_value(node: FlameGraphNode) -> None:
    stack = [node]
    while stack:
        current = stack.pop()
        current.children.sort(key=lambda child: child.value, reverse=True)
        stack.extend(current.children)