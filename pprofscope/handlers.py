"""Tool handlers that fetch profiles, analyse them and render flame graphs."""

from __future__ import annotations

import logging
import math
import os
import shutil
import subprocess
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pprofscope.allocs import analyze_allocs_profile
from pprofscope.cpu import analyze_cpu_profile
from pprofscope.goroutine import analyze_goroutine_profile
from pprofscope.heap import analyze_heap_profile
from pprofscope.memory_leak import detect_potential_memory_leaks
from pprofscope.placeholders import analyze_block_profile, analyze_mutex_profile
from pprofscope.profile_source import ProfileError, ProfileFile, fetch_profile, load_profile
from pprofscope.types import AnalysisError, Profile

log = logging.getLogger(__name__)

_ANALYZERS: dict[str, Callable[[Profile, int, str], str]] = {
    "cpu": analyze_cpu_profile,
    "heap": analyze_heap_profile,
    "goroutine": analyze_goroutine_profile,
    "allocs": analyze_allocs_profile,
    "mutex": analyze_mutex_profile,
    "block": analyze_block_profile,
}

_FLAMEGRAPH_FLAGS: dict[str, list[str]] = {
    "heap": ["-inuse_space"],
    "allocs": ["-alloc_space"],
    "cpu": [],
    "goroutine": [],
    "mutex": [],
    "block": [],
}

_GRAPHVIZ_MISSING = (
    "Graphviz (the dot command) was not found in PATH. Generating SVG flame graphs "
    "requires Graphviz.\n"
    "Please install Graphviz first. Common ways to install it:\n"
    "- macOS (Homebrew): brew install graphviz\n"
    "- Debian/Ubuntu: sudo apt-get update && sudo apt-get install graphviz\n"
    "- CentOS/Fedora: sudo yum install graphviz or sudo dnf install graphviz\n"
    "- Windows (Chocolatey): choco install graphviz"
)


class ToolError(Exception):
    """Raised when a tool call cannot be completed."""


@dataclass
class ToolResult:
    """Content items returned from a tool call."""

    content: list[dict[str, str]] = field(default_factory=list)


def _text_result(*texts: str) -> ToolResult:
    return ToolResult(content=[{"type": "text", "text": text} for text in texts])


def _required_string(arguments: Mapping[str, Any], name: str) -> str:
    value = arguments.get(name)
    if not isinstance(value, str) or not value:
        raise ToolError(f"missing or invalid required argument: {name} (string)")
    return value


def _number(arguments: Mapping[str, Any], name: str, default: float) -> float:
    value = arguments.get(name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def _positive_int(arguments: Mapping[str, Any], name: str, default: int) -> int:
    value = _number(arguments, name, float(default))
    if not math.isfinite(value):
        return default
    result = int(value)
    return result if result > 0 else default


def _fetch(uri: str, what: str) -> ProfileFile:
    try:
        return fetch_profile(uri)
    except ProfileError as exc:
        raise ToolError(f"failed to get {what}: {exc}") from exc


def _load(path: str, which: str = "") -> Profile:
    try:
        profile = load_profile(path)
    except ProfileError as exc:
        log.error("Error loading %sprofile file '%s': %s", which, path, exc)
        raise ToolError(f"{which}{exc}" if which else str(exc)) from exc
    log.info("Successfully parsed %sprofile file from path: %s", which, path)
    return profile


def handle_analyze_pprof(arguments: Mapping[str, Any]) -> ToolResult:
    """Analyse one profile and return the rendered report."""
    uri = _required_string(arguments, "profile_uri")
    profile_type = _required_string(arguments, "profile_type")
    output_format = arguments.get("output_format")
    if not isinstance(output_format, str):
        output_format = "text"
    top_n = _positive_int(arguments, "top_n", 5)

    log.info(
        "Handling analyze_pprof: URI=%s, Type=%s, TopN=%d, Format=%s",
        uri,
        profile_type,
        top_n,
        output_format,
    )

    with _fetch(uri, "profile file") as source:
        profile = _load(source.path)
        analyzer = _ANALYZERS.get(profile_type)
        if analyzer is None:
            raise ToolError(f"unsupported profile type: '{profile_type}'")
        try:
            result = analyzer(profile, top_n, output_format)
        except AnalysisError as exc:
            log.error("Analysis error for type '%s': %s", profile_type, exc)
            raise ToolError(str(exc)) from exc

    log.info("Analysis successful for type '%s'. Result length: %d", profile_type, len(result))
    return _text_result(result)


def handle_detect_memory_leaks(arguments: Mapping[str, Any]) -> ToolResult:
    """Compare two heap profiles and report growing object types."""
    old_uri = _required_string(arguments, "old_profile_uri")
    new_uri = _required_string(arguments, "new_profile_uri")
    threshold = _number(arguments, "threshold", 0.1)
    limit = _positive_int(arguments, "limit", 10)

    log.info(
        "Handling detect_memory_leaks: OldURI=%s, NewURI=%s, Threshold=%.2f, Limit=%d",
        old_uri,
        new_uri,
        threshold,
        limit,
    )

    with _fetch(old_uri, "old profile file") as old_source:
        old_profile = _load(old_source.path, "old ")
        with _fetch(new_uri, "new profile file") as new_source:
            new_profile = _load(new_source.path, "new ")
            try:
                result = detect_potential_memory_leaks(old_profile, new_profile, threshold, limit)
            except AnalysisError as exc:
                log.error("Error detecting memory leaks: %s", exc)
                raise ToolError(f"failed to detect memory leaks: {exc}") from exc

    log.info("Memory leak detection completed successfully. Result length: %d", len(result))
    return _text_result(result)


def handle_generate_flamegraph(arguments: Mapping[str, Any]) -> ToolResult:
    """Render an SVG graph with the pprof tool and return its path and content."""
    uri = _required_string(arguments, "profile_uri")
    profile_type = _required_string(arguments, "profile_type")
    output_path = _required_string(arguments, "output_svg_path")

    log.info(
        "Handling generate_flamegraph: URI=%s, Type=%s, Output=%s", uri, profile_type, output_path
    )

    with _fetch(uri, "profile file for flamegraph") as source:
        if not os.path.isabs(output_path):
            try:
                output_path = os.path.join(os.getcwd(), output_path)
                log.info("Resolved relative output path to: %s", output_path)
            except OSError as exc:
                log.warning("Cannot determine the working directory: %s", exc)

        flags = _FLAMEGRAPH_FLAGS.get(profile_type)
        if flags is None:
            raise ToolError(f"unsupported profile type for flamegraph: '{profile_type}'")
        command = ["go", "tool", "pprof", *flags, "-svg", "-output", output_path, source.path]
        log.info("Executing command: %s", " ".join(command))

        if shutil.which("dot") is None:
            log.error(_GRAPHVIZ_MISSING)
            raise ToolError(_GRAPHVIZ_MISSING)

        try:
            completed = subprocess.run(
                command, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, check=False
            )
        except OSError as exc:
            raise ToolError(f"failed to generate flamegraph: {exc}. Output: ") from exc
        output = (completed.stdout or b"").decode("utf-8", errors="replace")
        if completed.returncode != 0:
            log.error("Error executing pprof: exit status %d\n%s", completed.returncode, output)
            raise ToolError(
                f"failed to generate flamegraph: exit status {completed.returncode}. "
                f"Output: {output}"
            )

    log.info("Successfully generated flamegraph: %s", output_path)
    message = f"Flame graph generated and saved to: {output_path}"
    try:
        with open(output_path, encoding="utf-8", errors="replace") as handle:
            svg = handle.read()
    except OSError as exc:
        log.warning("Generated SVG file '%s' but could not read it: %s", output_path, exc)
        return _text_result(message)
    return _text_result(message, svg)