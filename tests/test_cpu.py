import json

import pytest

from pprofscope.cpu import analyze_cpu_profile
from pprofscope.formatters import format_sample_value
from pprofscope.types import (
    AnalysisError,
    Function,
    Line,
    Location,
    Profile,
    Sample,
    ValueType,
)


def _sample(fid, name, values):
    fn = Function(id=fid, name=name, filename=f"{name}.go")
    return Sample(locations=[Location(id=fid, lines=[Line(function=fn, line=fid * 10)])], values=values)


def _cpu_profile(duration_nanos=0):
    return Profile(
        sample_types=[ValueType("samples", "count"), ValueType("cpu", "nanoseconds")],
        samples=[
            _sample(1, "main.fast", [1, 1000]),
            _sample(2, "main.slow", [3, 3000]),
            _sample(1, "main.fast", [1, 500]),
        ],
        duration_nanos=duration_nanos,
    )


def test_prefers_cpu_sample_type_in_json():
    data = json.loads(analyze_cpu_profile(_cpu_profile(), 5, "json"))
    assert data["profileType"] == "cpu"
    assert data["valueType"] == "cpu"
    assert data["valueUnit"] == "nanoseconds"
    assert data["totalValue"] == 1000 + 3000 + 500


def test_functions_sorted_descending_and_aggregated():
    data = json.loads(analyze_cpu_profile(_cpu_profile(), 5, "json"))
    names = [f["functionName"] for f in data["functions"]]
    assert names == ["main.slow", "main.fast"]
    assert data["functions"][1]["flatValue"] == 1000 + 500
    assert sum(f["percentage"] for f in data["functions"]) == pytest.approx(100.0)
    assert data["functions"][0]["flatValueFormatted"] == format_sample_value(3000, "nanoseconds")


def test_top_n_limits_functions():
    data = json.loads(analyze_cpu_profile(_cpu_profile(), 1, "json"))
    assert data["topN"] == 1
    assert len(data["functions"]) == 1


def test_duration_estimated_from_samples_when_missing():
    data = json.loads(analyze_cpu_profile(_cpu_profile(), 5, "json"))
    assert data["totalDurationNanos"] == data["totalValue"]


def test_profile_duration_used_in_text_and_json():
    profile = _cpu_profile(duration_nanos=1_500_000_000)
    data = json.loads(analyze_cpu_profile(profile, 5, "json"))
    assert data["totalDurationNanos"] == 1_500_000_000
    text = analyze_cpu_profile(profile, 5, "text")
    assert "Total Duration: 1.5s\n" in text


def test_count_unit_has_no_duration():
    profile = Profile(
        sample_types=[ValueType("samples", "count")],
        samples=[_sample(1, "main.a", [4])],
    )
    data = json.loads(analyze_cpu_profile(profile, 5, "json"))
    assert "totalDurationNanos" not in data
    assert data["valueType"] == "samples"


def test_text_format_header_and_rows():
    text = analyze_cpu_profile(_cpu_profile(), 5, "text")
    assert text.startswith("CPU Profile Analysis (Top 5 Functions by Flat Time)\n")
    assert "main.slow" in text and "main.fast" in text
    assert text.index("main.slow") < text.index("main.fast")
    assert not text.startswith("```")


def test_markdown_wraps_in_code_block():
    text = analyze_cpu_profile(_cpu_profile(), 5, "markdown")
    assert text.startswith("```text\n")
    assert text.endswith("```\n")


def test_flamegraph_json():
    data = json.loads(analyze_cpu_profile(_cpu_profile(), 5, "flamegraph-json"))
    assert data["name"] == "root"
    assert data["value"] == 1000 + 3000 + 500
    assert {c["name"] for c in data["children"]} == {"main.fast", "main.slow"}


def test_fallback_to_second_sample_type():
    profile = Profile(
        sample_types=[ValueType("a", "x"), ValueType("b", "y")],
        samples=[_sample(1, "main.a", [1, 7])],
    )
    data = json.loads(analyze_cpu_profile(profile, 5, "json"))
    assert data["valueType"] == "b"
    assert data["totalValue"] == 7


def test_no_sample_types_raises():
    with pytest.raises(AnalysisError):
        analyze_cpu_profile(Profile(), 5, "text")


def test_invalid_format_raises():
    with pytest.raises(AnalysisError, match="unsupported output format"):
        analyze_cpu_profile(_cpu_profile(), 5, "invalid-format")