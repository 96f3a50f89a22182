"""Comparison of two heap profiles to spot growing object types."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pprofscope.formatters import format_bytes
from pprofscope.types import AnalysisError, Profile, Sample

log = logging.getLogger(__name__)

_RULE = "-" * 50 + "\n"
_UNKNOWN_TYPE = "unknown"


@dataclass
class _Growth:
    type: str
    old_value: int
    new_value: int
    growth: int
    growth_percent: float
    old_count: int
    new_count: int
    count_growth: int
    count_growth_pct: float


def _type_name(sample: Sample) -> str:
    for key in ("type", "object"):
        values = sample.labels.get(key)
        if values:
            return values[0]
    return _UNKNOWN_TYPE


def _growth_percent(old: int, growth: int) -> float:
    if old > 0:
        return (growth / old) * 100
    if growth > 0:
        return 100.0
    return 0.0


def _memory_by_type(profile: Profile, which: str) -> tuple[dict[str, int], dict[str, int]]:
    """Sum in-use bytes and object counts per type label."""
    value_index = -1
    objects_index = -1
    for i, st in enumerate(profile.sample_types):
        if st.type == "inuse_space" and st.unit == "bytes":
            value_index = i
        if st.type == "inuse_objects" and st.unit == "count":
            objects_index = i
    if value_index == -1:
        raise AnalysisError(f"could not find inuse_space sample type in the {which} profile")

    memory: dict[str, int] = {}
    objects: dict[str, int] = {}
    for sample in profile.samples:
        if not sample.locations or len(sample.values) <= value_index:
            continue
        value = sample.values[value_index]
        obj_count = 0
        if 0 <= objects_index < len(sample.values):
            obj_count = sample.values[objects_index]
        type_name = _type_name(sample)
        memory[type_name] = memory.get(type_name, 0) + value
        if obj_count > 0:
            objects[type_name] = objects.get(type_name, 0) + obj_count
    return memory, objects


def detect_potential_memory_leaks(
    old_profile: Profile, new_profile: Profile, threshold: float, limit: int
) -> str:
    """Report object types whose in-use memory grew by at least ``threshold``."""
    if threshold <= 0:
        threshold = 0.1
    if limit <= 0:
        limit = 10

    old_memory, old_objects = _memory_by_type(old_profile, "old")
    new_memory, new_objects = _memory_by_type(new_profile, "new")

    stats: list[_Growth] = []
    for type_name, new_value in new_memory.items():
        old_value = old_memory.get(type_name, 0)
        growth = new_value - old_value
        growth_pct = _growth_percent(old_value, growth)
        if growth_pct < threshold * 100:
            continue
        new_count = new_objects.get(type_name, 0)
        old_count = old_objects.get(type_name, 0)
        count_growth = new_count - old_count
        stats.append(
            _Growth(
                type=type_name,
                old_value=old_value,
                new_value=new_value,
                growth=growth,
                growth_percent=growth_pct,
                old_count=old_count,
                new_count=new_count,
                count_growth=count_growth,
                count_growth_pct=_growth_percent(old_count, count_growth),
            )
        )
    stats.sort(key=lambda stat: stat.growth, reverse=True)

    parts = ["Memory Leak Detection Report\n", "==========================\n\n"]
    if not stats:
        parts.append("No significant memory growth detected.\n")
        return "".join(parts)

    parts.append(
        f"Found {len(stats)} types with significant memory growth "
        f"(threshold: {threshold * 100:.1f}%)\n\n"
    )
    parts.append("Top Potential Memory Leaks:\n")
    parts.append(_RULE)
    parts.append(f"{'Type':<20} {'Old Size':<15} {'New Size':<15} {'Growth':<15} Growth %\n")
    parts.append(_RULE)

    for stat in stats[:limit]:
        parts.append(
            f"{stat.type:<20} {format_bytes(stat.old_value):<15} "
            f"{format_bytes(stat.new_value):<15} {format_bytes(stat.growth):<15} "
            f"{stat.growth_percent:.2f}%"
        )
        if stat.old_count > 0 or stat.new_count > 0:
            parts.append(
                f" (Objects: {stat.old_count} \u2192 {stat.new_count}, "
                f"+{stat.count_growth}, {stat.count_growth_pct:.2f}%)"
            )
        parts.append("\n")

    parts.append("\nRecommendations:\n")
    parts.append("1. Focus on types with both high absolute growth and high percentage growth\n")
    parts.append(
        "2. Look for objects that grow in count but not significantly in size "
        "(may indicate collection leaks)\n"
    )
    parts.append("3. Compare multiple snapshots over time to confirm consistent growth patterns\n")
    return "".join(parts)