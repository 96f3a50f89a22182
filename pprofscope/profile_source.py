"""Locating profile files and decoding the protobuf profile format."""

from __future__ import annotations

import gzip
import logging
import os
import shutil
import tempfile
import urllib.error
import urllib.parse
import urllib.request
import zlib
from collections.abc import Iterator
from dataclasses import dataclass, field

from pprofscope.types import Function, Line, Location, Profile, Sample, ValueType

log = logging.getLogger(__name__)

_GZIP_MAGIC = b"\x1f\x8b"
_UINT64_MASK = (1 << 64) - 1
_INT64_SIGN = 1 << 63

_WIRE_VARINT = 0
_WIRE_FIXED64 = 1
_WIRE_BYTES = 2
_WIRE_FIXED32 = 5


class ProfileError(Exception):
    """Raised when a profile cannot be fetched, read or decoded."""


@dataclass
class ProfileFile:
    """A profile on local disk; temporary files are removed by ``cleanup``."""

    path: str
    temporary: bool = False

    def cleanup(self) -> None:
        """Remove the file if it was downloaded to a temporary location."""
        if not self.temporary:
            return
        log.info("Cleaning up temporary file: %s", self.path)
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            log.warning("Failed to remove temporary file '%s': %s", self.path, exc)

    def __enter__(self) -> ProfileFile:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()


def fetch_profile(uri: str) -> ProfileFile:
    """Resolve a plain path, a file:// URI or an http(s):// URL to a local file."""
    if "://" not in uri:
        path = os.path.abspath(uri)
        log.info("Using absolute local path: %s", path)
        return ProfileFile(path)

    try:
        parsed = urllib.parse.urlsplit(uri)
    except ValueError as exc:
        raise ProfileError(f"invalid profile URI '{uri}': {exc}") from exc

    if parsed.scheme == "file":
        path = urllib.parse.unquote(parsed.path)
        if not path:
            raise ProfileError(f"invalid file path derived from URI '{uri}'")
        log.info("Using local profile file: %s", path)
        return ProfileFile(path)

    if parsed.scheme in ("http", "https"):
        return _download(uri)

    raise ProfileError(
        f"unsupported URI scheme '{parsed.scheme}', only 'file://', 'http://', "
        "'https://', or a plain local path are supported"
    )


def _download(url: str) -> ProfileFile:
    log.info("Attempting to download profile from URL: %s", url)
    try:
        response = urllib.request.urlopen(url)
    except urllib.error.HTTPError as exc:
        raise ProfileError(
            f"failed to download profile from '{url}': received status code {exc.code}"
        ) from exc
    except (urllib.error.URLError, OSError, ValueError) as exc:
        raise ProfileError(f"failed to download profile from '{url}': {exc}") from exc

    with response:
        if response.status != 200:
            raise ProfileError(
                f"failed to download profile from '{url}': "
                f"received status code {response.status}"
            )
        try:
            fd, path = tempfile.mkstemp(prefix="pprof-")
        except OSError as exc:
            raise ProfileError(f"failed to create temporary file for download: {exc}") from exc
        result = ProfileFile(path, temporary=True)
        log.info("Downloading profile to temporary file: %s", path)
        try:
            with os.fdopen(fd, "wb") as out:
                shutil.copyfileobj(response, out)
        except OSError as exc:
            result.cleanup()
            raise ProfileError(
                f"failed to write downloaded content to temporary file '{path}': {exc}"
            ) from exc

    log.info("Successfully downloaded profile to %s", path)
    return result


def load_profile(path: str) -> Profile:
    """Read and decode the profile stored at ``path``."""
    try:
        with open(path, "rb") as handle:
            data = handle.read()
    except OSError as exc:
        raise ProfileError(f"failed to open profile file '{path}': {exc}") from exc
    try:
        return parse_profile(data)
    except ProfileError as exc:
        raise ProfileError(f"failed to parse profile file '{path}': {exc}") from exc


# --- Protobuf decoding ---


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise ProfileError("unexpected end of data in varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & _UINT64_MASK, pos
        shift += 7
        if shift >= 70:
            raise ProfileError("varint too long")


def _fields(data: bytes) -> Iterator[tuple[int, int, int | bytes]]:
    pos = 0
    end = len(data)
    while pos < end:
        key, pos = _read_varint(data, pos)
        number, wire = key >> 3, key & 7
        if wire == _WIRE_VARINT:
            value, pos = _read_varint(data, pos)
            yield number, wire, value
            continue
        if wire == _WIRE_BYTES:
            size, pos = _read_varint(data, pos)
        elif wire == _WIRE_FIXED64:
            size = 8
        elif wire == _WIRE_FIXED32:
            size = 4
        else:
            raise ProfileError(f"unsupported wire type {wire} for field {number}")
        if pos + size > end:
            raise ProfileError(f"field {number} runs past the end of data")
        yield number, wire, data[pos : pos + size]
        pos += size


def _signed(value: int) -> int:
    return value - (1 << 64) if value >= _INT64_SIGN else value


def _scalar(wire: int, value: int | bytes) -> int:
    if wire != _WIRE_VARINT or not isinstance(value, int):
        raise ProfileError("expected a varint field")
    return value


def _message(wire: int, value: int | bytes) -> bytes:
    if wire != _WIRE_BYTES or not isinstance(value, bytes):
        raise ProfileError("expected a length-delimited field")
    return value


def _repeated_ints(wire: int, value: int | bytes) -> list[int]:
    if wire == _WIRE_VARINT and isinstance(value, int):
        return [value]
    packed = _message(wire, value)
    values = []
    pos = 0
    while pos < len(packed):
        item, pos = _read_varint(packed, pos)
        values.append(item)
    return values


@dataclass
class _RawSample:
    location_ids: list[int] = field(default_factory=list)
    values: list[int] = field(default_factory=list)
    labels: list[tuple[int, int]] = field(default_factory=list)


@dataclass
class _RawLocation:
    id: int = 0
    address: int = 0
    lines: list[tuple[int, int]] = field(default_factory=list)


@dataclass
class _RawProfile:
    sample_types: list[tuple[int, int]] = field(default_factory=list)
    samples: list[_RawSample] = field(default_factory=list)
    locations: list[_RawLocation] = field(default_factory=list)
    functions: list[tuple[int, int, int]] = field(default_factory=list)
    strings: list[str] = field(default_factory=list)
    duration_nanos: int = 0


def _decode_value_type(data: bytes) -> tuple[int, int]:
    type_index = unit_index = 0
    for number, wire, value in _fields(data):
        if number == 1:
            type_index = _scalar(wire, value)
        elif number == 2:
            unit_index = _scalar(wire, value)
    return type_index, unit_index


def _decode_label(data: bytes) -> tuple[int, int]:
    key = text = 0
    for number, wire, value in _fields(data):
        if number == 1:
            key = _scalar(wire, value)
        elif number == 2:
            text = _scalar(wire, value)
    return key, text


def _decode_sample(data: bytes) -> _RawSample:
    sample = _RawSample()
    for number, wire, value in _fields(data):
        if number == 1:
            sample.location_ids.extend(_repeated_ints(wire, value))
        elif number == 2:
            sample.values.extend(_signed(v) for v in _repeated_ints(wire, value))
        elif number == 3:
            sample.labels.append(_decode_label(_message(wire, value)))
    return sample


def _decode_line(data: bytes) -> tuple[int, int]:
    function_id = line = 0
    for number, wire, value in _fields(data):
        if number == 1:
            function_id = _scalar(wire, value)
        elif number == 2:
            line = _signed(_scalar(wire, value))
    return function_id, line


def _decode_location(data: bytes) -> _RawLocation:
    location = _RawLocation()
    for number, wire, value in _fields(data):
        if number == 1:
            location.id = _scalar(wire, value)
        elif number == 3:
            location.address = _scalar(wire, value)
        elif number == 4:
            location.lines.append(_decode_line(_message(wire, value)))
    return location


def _decode_function(data: bytes) -> tuple[int, int, int]:
    function_id = name = filename = 0
    for number, wire, value in _fields(data):
        if number == 1:
            function_id = _scalar(wire, value)
        elif number == 2:
            name = _signed(_scalar(wire, value))
        elif number == 4:
            filename = _signed(_scalar(wire, value))
    return function_id, name, filename


def _decode_profile(data: bytes) -> _RawProfile:
    raw = _RawProfile()
    for number, wire, value in _fields(data):
        if number == 1:
            raw.sample_types.append(_decode_value_type(_message(wire, value)))
        elif number == 2:
            raw.samples.append(_decode_sample(_message(wire, value)))
        elif number == 4:
            raw.locations.append(_decode_location(_message(wire, value)))
        elif number == 5:
            raw.functions.append(_decode_function(_message(wire, value)))
        elif number == 6:
            raw.strings.append(_message(wire, value).decode("utf-8", errors="replace"))
        elif number == 10:
            raw.duration_nanos = _signed(_scalar(wire, value))
    return raw


def _resolve(raw: _RawProfile) -> Profile:
    strings = raw.strings
    if not strings or strings[0] != "":
        raise ProfileError("malformed profile: string table must start with an empty string")

    def text(index: int) -> str:
        if not 0 <= index < len(strings):
            raise ProfileError(f"string index {index} out of range")
        return strings[index]

    functions = {
        fid: Function(id=fid, name=text(name), filename=text(filename))
        for fid, name, filename in raw.functions
    }

    locations: dict[int, Location] = {}
    for raw_location in raw.locations:
        lines = []
        for function_id, line in raw_location.lines:
            function = None
            if function_id != 0:
                function = functions.get(function_id)
                if function is None:
                    raise ProfileError(f"function ID {function_id} not found")
            lines.append(Line(function=function, line=line))
        locations[raw_location.id] = Location(
            id=raw_location.id, lines=lines, address=raw_location.address
        )

    sample_types = [ValueType(type=text(t), unit=text(u)) for t, u in raw.sample_types]

    samples = []
    for raw_sample in raw.samples:
        if len(raw_sample.values) != len(sample_types):
            raise ProfileError(
                f"mismatch: sample has {len(raw_sample.values)} values "
                f"vs. {len(sample_types)} types"
            )
        sample_locations = []
        for location_id in raw_sample.location_ids:
            location = locations.get(location_id)
            if location is None:
                raise ProfileError(f"location ID {location_id} not found")
            sample_locations.append(location)
        labels: dict[str, list[str]] = {}
        for key, value in raw_sample.labels:
            if value != 0:
                labels.setdefault(text(key), []).append(text(value))
        samples.append(
            Sample(locations=sample_locations, values=list(raw_sample.values), labels=labels)
        )

    return Profile(
        sample_types=sample_types, samples=samples, duration_nanos=raw.duration_nanos
    )


def parse_profile(data: bytes) -> Profile:
    """Decode a profile in the protobuf format, gzip-compressed or not."""
    if not data:
        raise ProfileError("empty input file")
    if data[:2] == _GZIP_MAGIC:
        try:
            data = gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as exc:
            raise ProfileError(f"decompressing profile: {exc}") from exc
    try:
        raw = _decode_profile(data)
    except ProfileError as exc:
        raise ProfileError(f"parsing profile: {exc}") from exc
    return _resolve(raw)