"""Allocation-pattern analysis of allocs profiles."""

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
)

log = logging.getLogger(__name__)

_RULE = "-" * 50 + "\n"


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
    """Pick the allocated-bytes column and the allocated-objects column."""
    value_index = -1
    objects_index = -1
    for i, st in enumerate(profile.sample_types):
        if st.type == "alloc_space" and st.unit == "bytes":
            value_index = i
        if st.type == "alloc_objects" and st.unit == "count":
            objects_index = i

    if value_index == -1:
        for i, st in enumerate(profile.sample_types):
            if st.type in ("alloc", "allocation") and st.unit == "bytes":
                value_index = i
                log.warning("'alloc_space' not found, using '%s/%s' instead", st.type, st.unit)
                break

    if value_index == -1 and profile.sample_types:
        value_index = 0
        st = profile.sample_types[0]
        log.warning(
            "Could not find allocation space sample type, defaulting to index 0: %s/%s",
            st.type,
            st.unit,
        )

    if value_index == -1:
        raise AnalysisError(
            "could not determine value type from profile sample types (e.g., alloc_space bytes)"
        )
    return value_index, objects_index


def _add(table: dict[str, _Aggregate], key: str, value: int, count: int) -> None:
    entry = table.setdefault(key, _Aggregate())
    entry.value += value
    if count > 0:
        entry.count += count


def _ranked(table: dict[str, _Aggregate]) -> list[tuple[str, _Aggregate]]:
    return sorted(table.items(), key=lambda item: item[1].value, reverse=True)


def analyze_allocs_profile(profile: Profile, top_n: int, output_format: str) -> str:
    """Report allocated memory by function and by allocation site."""
    log.info("Analyzing Allocs profile (Top %d, Format: %s)", top_n, output_format)

    value_index, objects_index = _select_indices(profile)
    selected = profile.sample_types[value_index]
    value_type, value_unit = selected.type, selected.unit
    log.info("Using index %d (%s/%s) for Allocs analysis", value_index, value_type, value_unit)

    by_function: dict[str, _Aggregate] = {}
    by_site: dict[str, _Aggregate] = {}
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
    sites = _ranked(by_site)[: len(functions)]

    if output_format in ("text", "markdown"):
        parts: list[str] = []
        if output_format == "markdown":
            parts.append("```text\n")
        parts.append(f"Allocation Profile Analysis (Top {top_n} Functions by {value_type})\n")
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

        if output_format == "markdown":
            parts.append("```\n")
        return "".join(parts)

    if output_format == "json":
        data: dict = {
            "profileType": "allocs",
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
        data["allocationSites"] = site_stats

        return json.dumps(data, indent=2, ensure_ascii=False)

    if output_format == "flamegraph-json":
        log.info(
            "Generating flame graph JSON for Allocs profile (%s) using value index %d",
            value_type,
            value_index,
        )
        try:
            root = build_flame_graph_tree(profile, value_index)
        except AnalysisError as exc:
            log.error("Error building flame graph tree for allocs: %s", exc)
            error = ErrorResult(error=f"Failed to build flame graph tree for allocs: {exc}")
            return json.dumps(error.to_dict(), separators=(",", ":"), ensure_ascii=False)
        return json.dumps(root.to_dict(), separators=(",", ":"), ensure_ascii=False)

    raise AnalysisError(f"unsupported output format: {output_format}")