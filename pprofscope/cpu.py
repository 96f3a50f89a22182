"""Flat-time analysis of CPU profiles."""

from __future__ import annotations

import json
import logging

from pprofscope.flamegraph import build_flame_graph_tree
from pprofscope.formatters import format_sample_value
from pprofscope.types import (
    AnalysisError,
    CPUAnalysisResult,
    CPUFunctionStat,
    ErrorResult,
    Profile,
)

log = logging.getLogger(__name__)

_RULE = "-" * 50 + "\n"


def _fraction(frac: int, digits: int) -> str:
    if frac == 0:
        return ""
    return "." + str(frac).zfill(digits).rstrip("0")


def _duration_string(nanos: int) -> str:
    """Render a nanosecond duration the way duration strings usually read (1h2m3.5s, 1.5ms)."""
    if nanos == 0:
        return "0s"
    sign = "-" if nanos < 0 else ""
    u = abs(nanos)
    if u < 1_000_000_000:
        if u < 1_000:
            return f"{sign}{u}ns"
        if u < 1_000_000:
            whole, frac = divmod(u, 1_000)
            return f"{sign}{whole}{_fraction(frac, 3)}\u00b5s"
        whole, frac = divmod(u, 1_000_000)
        return f"{sign}{whole}{_fraction(frac, 6)}ms"
    secs, frac = divmod(u, 1_000_000_000)
    text = f"{secs % 60}{_fraction(frac, 9)}s"
    minutes = secs // 60
    if minutes > 0:
        text = f"{minutes % 60}m{text}"
        hours = minutes // 60
        if hours > 0:
            text = f"{hours}h{text}"
    return sign + text


def _select_value_index(profile: Profile) -> int:
    index = -1
    for i, st in enumerate(profile.sample_types):
        if st.type in ("cpu", "samples") and st.unit in ("nanoseconds", "count"):
            if index == -1 or st.type == "cpu":
                index = i
    if index != -1:
        return index
    count = len(profile.sample_types)
    if count > 1:
        st = profile.sample_types[1]
        log.warning(
            "Could not definitively identify CPU time value type, defaulting to index 1: %s/%s",
            st.type,
            st.unit,
        )
        return 1
    if count == 1:
        st = profile.sample_types[0]
        log.warning("Only one sample type found, using index 0: %s/%s", st.type, st.unit)
        return 0
    raise AnalysisError(
        "could not determine value type from profile sample types (e.g. cpu nanoseconds)"
    )


def _percent(part: int, total: int) -> float:
    return (part / total) * 100 if total != 0 else 0.0


def analyze_cpu_profile(profile: Profile, top_n: int, output_format: str) -> str:
    """Report the functions with the largest flat CPU time."""
    log.info("Analyzing CPU profile (Top %d, Format: %s)", top_n, output_format)

    value_index = _select_value_index(profile)
    selected = profile.sample_types[value_index]
    value_unit = selected.unit
    log.info("Using index %d (%s/%s) for CPU analysis", value_index, selected.type, value_unit)

    flat_time: dict[str, int] = {}
    total_value = 0
    for sample in profile.samples:
        if not sample.locations or len(sample.values) <= value_index:
            continue
        value = sample.values[value_index]
        total_value += value
        line = next((ln for ln in sample.locations[0].lines if ln.function is not None), None)
        if line is not None:
            name = line.function.name
            flat_time[name] = flat_time.get(name, 0) + value

    if total_value == 0:
        log.warning(
            "Total value for the selected sample type (%s/%s) is zero.",
            selected.type,
            value_unit,
        )

    stats = sorted(flat_time.items(), key=lambda item: item[1], reverse=True)
    top = stats[: max(top_n, 0)]

    total_duration = profile.duration_nanos
    if total_duration == 0 and total_value > 0 and value_unit == "nanoseconds":
        total_duration = total_value
        log.info(
            "Profile duration is 0, estimated total duration from samples: %s",
            _duration_string(total_duration),
        )

    if output_format in ("text", "markdown"):
        parts: list[str] = []
        if output_format == "markdown":
            parts.append("```text\n")
        parts.append(f"CPU Profile Analysis (Top {top_n} Functions by Flat Time)\n")
        parts.append(
            f"Total Samples/Time ({value_unit}): "
            f"{format_sample_value(total_value, value_unit)}\n"
        )
        if total_duration > 0:
            parts.append(f"Total Duration: {_duration_string(total_duration)}\n")
        parts.append(_RULE)
        parts.append(f"{'Flat Time':<15} {'%':<15} Function Name\n")
        parts.append(_RULE)
        for name, flat in top:
            parts.append(
                f"{format_sample_value(flat, value_unit):<15} "
                f"{_percent(flat, total_value):<15.2f} {name}\n"
            )
        if output_format == "markdown":
            parts.append("```\n")
        return "".join(parts)

    if output_format == "json":
        result = CPUAnalysisResult(
            profile_type="cpu",
            value_type=selected.type,
            value_unit=value_unit,
            total_value=total_value,
            total_value_formatted=format_sample_value(total_value, value_unit),
            top_n=len(top),
            functions=[
                CPUFunctionStat(
                    function_name=name,
                    flat_value=flat,
                    flat_value_formatted=format_sample_value(flat, value_unit),
                    percentage=_percent(flat, total_value),
                )
                for name, flat in top
            ],
            total_duration_nanos=max(total_duration, 0),
        )
        return json.dumps(result.to_dict(), indent=2, ensure_ascii=False)

    if output_format == "flamegraph-json":
        log.info("Generating flame graph JSON for CPU profile using value index %d", value_index)
        try:
            root = build_flame_graph_tree(profile, value_index)
        except AnalysisError as exc:
            log.error("Error building flame graph tree: %s", exc)
            error = ErrorResult(error=f"Failed to build flame graph tree: {exc}")
            return json.dumps(error.to_dict(), separators=(",", ":"), ensure_ascii=False)
        return json.dumps(root.to_dict(), separators=(",", ":"), ensure_ascii=False)

    raise AnalysisError(f"unsupported output format: {output_format}")