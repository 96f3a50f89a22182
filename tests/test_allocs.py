import json

import pytest

from pprofscope.allocs import analyze_allocs_profile
from pprofscope.types import (
    AnalysisError,
    Function,
    Line,
    Location,
    Profile,
    Sample,
    ValueType,
)


def _sample(loc_id, name, filename, line, values, type_label=None):
    labels = {"type": [type_label]} if type_label else {}
    return Sample(
        locations=[
            Location(
                id=loc_id,
                lines=[Line(function=Function(id=loc_id, name=name, filename=filename), line=line)],
            )
        ],
        values=values,
        labels=labels,
    )


@pytest.fixture
def allocs_profile():
    return Profile(
        sample_types=[ValueType("alloc_space", "bytes"), ValueType("alloc_objects", "count")],
        samples=[
            _sample(1, "TestFunction1", "test.go", 10, [1024, 10], "TestType1"),
            _sample(2, "TestFunction2", "test.go", 20, [2048, 20], "TestType2"),
        ],
    )


def test_text_format(allocs_profile):
    result = analyze_allocs_profile(allocs_profile, 5, "text")
    for expected in (
        "Allocation Profile Analysis",
        "TestFunction1",
        "TestFunction2",
        "By Function",
        "By Allocation Site",
    ):
        assert expected in result
    assert "Total alloc_space (bytes): 3.00 KB\n" in result
    assert "Total Objects: 30\n" in result
    assert "TestFunction2 at test.go:20 (20 objects)" in result


def test_text_orders_by_value(allocs_profile):
    result = analyze_allocs_profile(allocs_profile, 5, "text")
    assert result.index("TestFunction2 (20 objects)") < result.index("TestFunction1 (10 objects)")


def test_markdown_format(allocs_profile):
    result = analyze_allocs_profile(allocs_profile, 5, "markdown")
    assert result.startswith("```text\n")
    assert result.endswith("```\n")


def test_json_format(allocs_profile):
    result = json.loads(analyze_allocs_profile(allocs_profile, 5, "json"))
    for field in (
        "profileType",
        "valueType",
        "valueUnit",
        "totalValue",
        "totalValueFormatted",
        "functions",
        "allocationSites",
    ):
        assert field in result
    assert len(result["functions"]) == 2
    assert result["profileType"] == "allocs"
    assert result["totalValue"] == 3072
    assert result["totalObjects"] == 30
    assert result["topN"] == 2
    assert result["functions"][0]["functionName"] == "TestFunction2"
    site = result["allocationSites"][0]
    assert site["site"] == "TestFunction2 at test.go:20"
    assert site["objectCount"] == 20
    assert site["avgSize"] == 102


def test_json_top_n_limits(allocs_profile):
    result = json.loads(analyze_allocs_profile(allocs_profile, 1, "json"))
    assert [f["functionName"] for f in result["functions"]] == ["TestFunction2"]
    assert len(result["allocationSites"]) == 1


def test_flamegraph_json_format(allocs_profile):
    result = json.loads(analyze_allocs_profile(allocs_profile, 5, "flamegraph-json"))
    for field in ("name", "value", "children"):
        assert field in result
    assert result["value"] == 3072
    assert result["objectCount"] == 30


def test_invalid_format(allocs_profile):
    with pytest.raises(AnalysisError):
        analyze_allocs_profile(allocs_profile, 5, "invalid-format")


def test_missing_alloc_space_falls_back():
    profile = Profile(sample_types=[ValueType("some_other_type", "bytes")])
    result = analyze_allocs_profile(profile, 5, "text")
    assert "some_other_type" in result


def test_fallback_to_alloc():
    profile = Profile(
        sample_types=[ValueType("alloc", "bytes")],
        samples=[
            Sample(
                locations=[Location(id=1, lines=[Line(function=Function(id=1, name="TestFunction"))])],
                values=[1024],
            )
        ],
    )
    result = analyze_allocs_profile(profile, 5, "text")
    assert "TestFunction" in result
    assert "Total alloc (bytes): 1.00 KB" in result


def test_zero_samples():
    profile = Profile(
        sample_types=[ValueType("alloc_space", "bytes"), ValueType("alloc_objects", "count")],
    )
    result = analyze_allocs_profile(profile, 5, "text")
    assert "Total alloc_space (bytes): 0 B" in result


def test_zero_samples_json_keeps_sites():
    profile = Profile(sample_types=[ValueType("alloc_space", "bytes")])
    result = json.loads(analyze_allocs_profile(profile, 5, "json"))
    assert result["allocationSites"] == []
    assert "totalObjects" not in result


def test_no_sample_types_raises():
    with pytest.raises(AnalysisError):
        analyze_allocs_profile(Profile(), 5, "text")