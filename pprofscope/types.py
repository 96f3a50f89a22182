"""Profile model and the result records that the analyses produce."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class AnalysisError(Exception):
    """Raised when a profile cannot be analysed as requested."""


# --- Profile model ---


@dataclass
class ValueType:
    """Kind and unit of one sample value column."""

    type: str
    unit: str


@dataclass
class Function:
    """A function referenced from the profile's locations."""

    id: int = 0
    name: str = ""
    filename: str = ""


@dataclass
class Line:
    """A source line within a location."""

    function: Function | None = None
    line: int = 0


@dataclass
class Location:
    """A program location; several lines mean inlined frames."""

    id: int = 0
    lines: list[Line] = field(default_factory=list)
    address: int = 0


@dataclass
class Sample:
    """One stack trace with its values; locations run from leaf to root."""

    locations: list[Location] = field(default_factory=list)
    values: list[int] = field(default_factory=list)
    labels: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class Profile:
    """A parsed profile: sample value columns and samples."""

    sample_types: list[ValueType] = field(default_factory=list)
    samples: list[Sample] = field(default_factory=list)
    duration_nanos: int = 0


# --- Result records ---


def _put_if(data: dict[str, Any], key: str, value: Any) -> None:
    if value:
        data[key] = value


@dataclass
class ErrorResult:
    """An error reported in place of a JSON result."""

    error: str
    top_n: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"error": self.error}
        _put_if(data, "topN", self.top_n)
        return data


@dataclass
class CPUFunctionStat:
    """Flat CPU cost of one function."""

    function_name: str
    flat_value: int
    flat_value_formatted: str
    percentage: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "functionName": self.function_name,
            "flatValue": self.flat_value,
            "flatValueFormatted": self.flat_value_formatted,
            "percentage": self.percentage,
        }


@dataclass
class CPUAnalysisResult:
    """Top functions of a CPU profile."""

    profile_type: str
    value_type: str
    value_unit: str
    total_value: int
    total_value_formatted: str
    top_n: int
    functions: list[CPUFunctionStat] = field(default_factory=list)
    total_duration_nanos: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "profileType": self.profile_type,
            "valueType": self.value_type,
            "valueUnit": self.value_unit,
            "totalValue": self.total_value,
            "totalValueFormatted": self.total_value_formatted,
        }
        _put_if(data, "totalDurationNanos", self.total_duration_nanos)
        data["topN"] = self.top_n
        data["functions"] = [f.to_dict() for f in self.functions]
        return data


@dataclass
class HeapFunctionStat:
    """Memory attributed to one function."""

    function_name: str
    value: int
    value_formatted: str
    percentage: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "functionName": self.function_name,
            "value": self.value,
            "valueFormatted": self.value_formatted,
            "percentage": self.percentage,
        }


@dataclass
class HeapAnalysisResult:
    """Top functions of a heap profile."""

    profile_type: str
    value_type: str
    value_unit: str
    total_value: int
    total_value_formatted: str
    top_n: int
    functions: list[HeapFunctionStat] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "profileType": self.profile_type,
            "valueType": self.value_type,
            "valueUnit": self.value_unit,
            "totalValue": self.total_value,
            "totalValueFormatted": self.total_value_formatted,
            "topN": self.top_n,
            "functions": [f.to_dict() for f in self.functions],
        }


@dataclass
class GoroutineStackInfo:
    """A distinct goroutine stack and how many goroutines share it."""

    count: int
    stack_trace: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"count": self.count, "stackTrace": list(self.stack_trace)}


@dataclass
class GoroutineAnalysisResult:
    """Top goroutine stacks by count."""

    profile_type: str
    total_goroutines: int
    top_n: int
    stacks: list[GoroutineStackInfo] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "profileType": self.profile_type,
            "totalGoroutines": self.total_goroutines,
            "topN": self.top_n,
            "stacks": [s.to_dict() for s in self.stacks],
        }


@dataclass
class FlameGraphNode:
    """A node of a hierarchical flame graph."""

    name: str
    value: int = 0
    children: list[FlameGraphNode] = field(default_factory=list)
    self_value: int = 0
    value_formatted: str = ""
    file_path: str = ""
    line_num: int = 0
    object_count: int = 0
    avg_size: int = 0
    avg_size_formatted: str = ""
    type: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "value": self.value}
        _put_if(data, "children", [c.to_dict() for c in self.children])
        _put_if(data, "selfValue", self.self_value)
        _put_if(data, "valueFormatted", self.value_formatted)
        _put_if(data, "filePath", self.file_path)
        _put_if(data, "lineNum", self.line_num)
        _put_if(data, "objectCount", self.object_count)
        _put_if(data, "avgSize", self.avg_size)
        _put_if(data, "avgSizeFormatted", self.avg_size_formatted)
        _put_if(data, "type", self.type)
        return data


@dataclass
class AllocSiteStat:
    """Memory attributed to one allocation site."""

    site: str
    value: int
    value_formatted: str
    percentage: float
    object_count: int = 0
    avg_size: int = 0
    avg_size_formatted: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "site": self.site,
            "value": self.value,
            "valueFormatted": self.value_formatted,
        }
        _put_if(data, "objectCount", self.object_count)
        data["percentage"] = self.percentage
        _put_if(data, "avgSize", self.avg_size)
        _put_if(data, "avgSizeFormatted", self.avg_size_formatted)
        return data


@dataclass
class TypeStat:
    """Memory attributed to one object type."""

    type: str
    value: int
    value_formatted: str
    percentage: float
    object_count: int = 0
    avg_size: int = 0
    avg_size_formatted: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "value": self.value,
            "valueFormatted": self.value_formatted,
        }
        _put_if(data, "objectCount", self.object_count)
        data["percentage"] = self.percentage
        _put_if(data, "avgSize", self.avg_size)
        _put_if(data, "avgSizeFormatted", self.avg_size_formatted)
        return data