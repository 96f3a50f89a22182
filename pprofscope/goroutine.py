"""Stack-grouping analysis of goroutine profiles."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from pprofscope.types import (
    AnalysisError,
    GoroutineAnalysisResult,
    GoroutineStackInfo,
    Profile,
    Sample,
)

log = logging.getLogger(__name__)

_RULE = "-" * 50 + "\n"


@dataclass
class _StackInfo:
    stack: list[str] = field(default_factory=list)
    count: int = 0


def _stack_of(sample: Sample) -> tuple[tuple[tuple[str, str, int], ...], list[str]]:
    key: list[tuple[str, str, int]] = []
    formatted: list[str] = []
    for location in sample.locations:
        if not location.lines:
            continue
        line = location.lines[0]
        fn = line.function
        if fn is None:
            continue
        key.append((fn.name, fn.filename, line.line))
        formatted.append(f"{fn.name}\n\t{fn.filename}:{line.line}")
    return tuple(key), formatted


def analyze_goroutine_profile(profile: Profile, top_n: int, output_format: str) -> str:
    """Group goroutines by identical stack and report the most common stacks."""
    log.info("Analyzing Goroutine profile (Top %d, Format: %s)", top_n, output_format)

    if not profile.sample_types:
        raise AnalysisError("goroutine profile has no sample types")
    value_index = 0
    selected = profile.sample_types[value_index]
    if selected.type != "goroutines":
        log.warning("Expected 'goroutines' sample type, found: %s. Using index 0.", profile.sample_types)

    stacks: dict[tuple[tuple[str, str, int], ...], _StackInfo] = {}
    total = 0
    for sample in profile.samples:
        if len(sample.values) <= value_index:
            continue
        count = sample.values[value_index]
        total += count
        key, formatted = _stack_of(sample)
        if not key:
            continue
        info = stacks.get(key)
        if info is None:
            stacks[key] = _StackInfo(stack=formatted, count=count)
        else:
            info.count += count

    ranked = sorted(stacks.values(), key=lambda info: info.count, reverse=True)
    top = ranked[: max(top_n, 0)]

    if output_format in ("text", "markdown"):
        parts: list[str] = []
        if output_format == "markdown":
            parts.append("```text\n")
        parts.append(f"Goroutine Profile Analysis (Top {top_n} Stacks by Count)\n")
        parts.append(f"Total Goroutines ({selected.type}/{selected.unit}): {total}\n")
        parts.append(_RULE)
        for info in top:
            parts.append(f"\n{info.count} goroutines with stack:\n")
            parts.extend(f"  {line}\n" for line in info.stack)
            parts.append(_RULE)
        if output_format == "markdown":
            parts.append("```\n")
        return "".join(parts)

    if output_format == "json":
        result = GoroutineAnalysisResult(
            profile_type="goroutine",
            total_goroutines=total,
            top_n=len(top),
            stacks=[GoroutineStackInfo(count=i.count, stack_trace=list(i.stack)) for i in top],
        )
        return json.dumps(result.to_dict(), indent=2, ensure_ascii=False)

    raise AnalysisError(f"unsupported output format: {output_format}")