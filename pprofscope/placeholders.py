"""Mutex and block profile analyses, which report only a pending notice."""

from __future__ import annotations

import json
import logging

from pprofscope.types import ErrorResult, Profile

log = logging.getLogger(__name__)


def _pending(kind: str, label: str, top_n: int, output_format: str) -> str:
    log.info("%s analysis called (Top %d, Format: %s) - pending", kind, top_n, output_format)
    if output_format == "json":
        error = ErrorResult(error=f"JSON output not yet implemented for {kind} profile", top_n=top_n)
        return json.dumps(error.to_dict(), indent=2, ensure_ascii=False)
    return f"{label} Analysis Result (Top {top_n}, Format: {output_format})\n[Implementation Pending]"


def analyze_mutex_profile(profile: Profile, top_n: int, output_format: str) -> str:
    """Report that mutex contention analysis is pending."""
    return _pending("mutex", "Mutex", top_n, output_format)


def analyze_block_profile(profile: Profile, top_n: int, output_format: str) -> str:
    """Report that blocking analysis is pending."""
    return _pending("block", "Block", top_n, output_format)