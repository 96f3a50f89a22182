"""In-use memory analysis of heap profiles."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from pprofscope.flamegraph import build_flame_graph_tree
from pprofscope.formatters import format_bytes
from pprofscope.types import (
    AllocSiteStat,
    AnalysisError,
    ErrorResult,
    HeapFunctionStat,
    Profile,
    Sample,
    TypeStat,
)

log = logging.getLogger(__name__)

_RULE = "-" * 50 + "\n"
_UNKNOWN_TYPE = "unknown"


@dataclass
class _Aggregate:
    """Bytes and object count gathered under one key."""

    value: int = 0
    count: int = 0


def _div_trunc(a: int, b: int) -> int:
    """Integer division rounding toward zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def _percent(part: int, total: int) -> float:
    return (part / total) * 100 if total != 0 else 0.0


def _select_indices(profile: Profile) -> tuple[int, int]:
    """Pick the value column (bytes) and the object-count column."""
    value_index = -1
    objects_index = -1
    for i, st in enumerate(profile.sample_types):
        if st.type == "inuse_space" and st.unit == "bytes":
            value_index = i
        if st.type == "inuse_objects" and st.unit == "count":
            objects_index = i

    if value_index == -1:
        for i, st in enumerate(profile.sample_types):
            if st.type == "alloc_space" and st.unit == "bytes":
                value_index = i
                log.warning("'inuse_space' not found, falling back to 'alloc_space'")
                break

    if objects_index == -1:
        for i, st in enumerate(profile.sample_types):
            if st.type == "alloc_objects" and st.unit == "count":
                objects_index = i
                log.warning("'inuse_objects' not found, falling back to 'alloc_objects'")
                break

    if value_index == -1 and profile.sample_types:
        value_index = len(profile.sample_types) - 1
        st = profile.sample_types[value_index]
        log.warning(
            "Could not find 'inuse_space' or 'alloc_space', defaulting to last sample type index %d: %s/%s",
            value_index,
            st.type,
            st.unit,
        )

    if value_index == -1:
        raise AnalysisError(
            "could not determine value type from profile sample types (e.g. inuse_space bytes)"
        )
    return value_index, objects_index


def _type_name(sample: Sample) -> str:
    for key in ("type", "object"):
        values = sample.labels.get(key)
        if values:
            return values[0]
    return _UNKNOWN_TYPE


def _add(table: dict[str, _Aggregate], key: str, value: int, count: int) -> None:
    entry = table.setdefault(key, _Aggregate())
    entry.value += value
    if count > 0:
        entry.count += count


def _ranked(table: dict[str, _Aggregate]) -> list[tuple[str, _Aggregate]]:
    return sorted(table.items(), key=lambda item: item[1].value, reverse=True)


def analyze_heap_profile(profile: Profile, top_n: int, output_format: str) -> str:
    """Report memory use by function, allocation site and object type."""
    log.info("Analyzing Heap profile (Top %d, Format: %s)", top_n, output_format)

    value_index, objects_index = _select_indices(profile)
    selected = profile.sample_types[value_index]
    value_type, value_unit = selected.type, selected.unit
    log.info("Using index %d (%s/%s) for Heap analysis", value_index, value_type, value_unit)
    if objects_index >= 0:
        st = profile.sample_types[objects_index]
        log.info("Using index %d (%s/%s) for object counts", objects_index, st.type, st.unit)

    by_function: dict[str, _Aggregate] = {}
    by_site: dict[str, _Aggregate] = {}
    by_type: dict[str, _Aggregate] = {}
    total_value = 0
    total_objects = 0

    for sample in profile.samples:
        if not sample.locations or len(sample.values) <= value_index:
            continue
        value = sample.values[value_index]
        total_value += value

        obj_count = 0
        if 0 <= objects_index < len(sample.values):
            obj_count = sample.values[objects_index]
            total_objects += obj_count

        _add(by_type, _type_name(sample), value, obj_count)

        line = next((ln for ln in sample.locations[0].lines if ln.function is not None), None)
        if line is not None:
            fn = line.function
            _add(by_function, fn.name, value, obj_count)
            _add(by_site, f"{fn.name} at {fn.filename}:{line.line}", value, obj_count)

    if total_value == 0:
        log.warning(
            "Total value for the selected sample type (%s/%s) is zero.", value_type, value_unit
        )

    limit = max(top_n, 0)
    functions = _ranked(by_function)[:limit]
    sites = _ranked(by_site)[:limit]
    all_types = _ranked(by_type)
    types = all_types[:limit]
    show_types = bool(all_types) and all_types[0][0] != _UNKNOWN_TYPE

    if output_format in ("text", "markdown"):
        parts: list[str] = []
        if output_format == "markdown":
            parts.append("```text\n")
        parts.append(f"Heap Profile Analysis (Top {top_n} Functions by {value_type})\n")
        parts.append(f"Total {value_type} ({value_unit}): {format_bytes(total_value)}\n")
        if total_objects > 0:
            parts.append(f"Total Objects: {total_objects}\n")

        parts.append("\n=== By Function ===\n")
        parts.append(_RULE)
        parts.append(f"{value_type:<15} {'%':<15} Function Name\n")
        parts.append(_RULE)
        for name, agg in functions:
            objects = f" ({agg.count} objects)" if agg.count > 0 else ""
            parts.append(
                f"{format_bytes(agg.value):<15} {_percent(agg.value, total_value):<15.2f} "
                f"{name}{objects}\n"
            )

        parts.append("\n=== By Allocation Site ===\n")
        parts.append(_RULE)
        parts.append(f"{value_type:<15} {'%':<15} Allocation Site\n")
        parts.append(_RULE)
        for site, agg in sites:
            objects = f" ({agg.count} objects)" if agg.count > 0 else ""
            parts.append(
                f"{format_bytes(agg.value):<15} {_percent(agg.value, total_value):<15.2f} "
                f"{site}{objects}\n"
            )

        if show_types:
            parts.append("\n=== By Type ===\n")
            parts.append(_RULE)
            parts.append(f"{value_type:<15} {'%':<15} {'Avg Size':<15} Type\n")
            parts.append(_RULE)
            for type_name, agg in types:
                avg = _div_trunc(agg.value, agg.count) if agg.count > 0 else 0
                parts.append(
                    f"{format_bytes(agg.value):<15} {_percent(agg.value, total_value):<15.2f} "
                    f"{format_bytes(avg):<15} {type_name} ({agg.count} objects)\n"
                )

        if output_format == "markdown":
            parts.append("```\n")
        return "".join(parts)

    if output_format == "json":
        data: dict = {
            "profileType": "heap",
            "valueType": value_type,
            "valueUnit": value_unit,
            "totalValue": total_value,
            "totalValueFormatted": format_bytes(total_value),
        }
        if total_objects > 0:
            data["totalObjects"] = total_objects
        data["topN"] = len(functions)
        data["functions"] = [
            HeapFunctionStat(
                function_name=name,
                value=agg.value,
                value_formatted=format_bytes(agg.value),
                percentage=_percent(agg.value, total_value),
            ).to_dict()
            for name, agg in functions
        ]

        site_stats = []
        for site, agg in sites:
            stat = AllocSiteStat(
                site=site,
                value=agg.value,
                value_formatted=format_bytes(agg.value),
                percentage=_percent(agg.value, total_value),
            )
            if agg.count > 0:
                stat.object_count = agg.count
                stat.avg_size = _div_trunc(agg.value, agg.count)
                stat.avg_size_formatted = format_bytes(stat.avg_size)
            site_stats.append(stat.to_dict())
        if site_stats:
            data["allocationSites"] = site_stats

        if show_types:
            type_stats = []
            for type_name, agg in types:
                stat = TypeStat(
                    type=type_name,
                    value=agg.value,
                    value_formatted=format_bytes(agg.value),
                    percentage=_percent(agg.value, total_value),
                )
                if agg.count > 0:
                    stat.object_count = agg.count
                    stat.avg_size = _div_trunc(agg.value, agg.count)
                    stat.avg_size_formatted = format_bytes(stat.avg_size)
                type_stats.append(stat.to_dict())
            if type_stats:
                data["types"] = type_stats

        return json.dumps(data, indent=2, ensure_ascii=False)

    if output_format == "flamegraph-json":
        log.info(
            "Generating flame graph JSON for Heap profile (%s) using value index %d",
            value_type,
            value_index,
        )
        try:
            root = build_flame_graph_tree(profile, value_index)
        except AnalysisError as exc:
            log.error("Error building flame graph tree for heap: %s", exc)
            error = ErrorResult(error=f"Failed to build flame graph tree for heap: {exc}")
            return json.dumps(error.to_dict(), separators=(",", ":"), ensure_ascii=False)
        return json.dumps(root.to_dict(), separators=(",", ":"), ensure_ascii=False)

    raise AnalysisError(f"unsupported output format: {output_format}")