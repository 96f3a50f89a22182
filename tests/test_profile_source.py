import gzip
import http.server
import os
import threading

import pytest

from pprofscope.profile_source import (
    ProfileError,
    ProfileFile,
    fetch_profile,
    load_profile,
    parse_profile,
)


def _varint(value):
    value &= (1 << 64) - 1
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _vint(number, value):
    return _varint(number << 3) + _varint(value)


def _msg(number, payload):
    return _varint((number << 3) | 2) + _varint(len(payload)) + payload


class _Builder:
    def __init__(self):
        self.strings = [""]
        self.body = b""

    def s(self, text):
        if text not in self.strings:
            self.strings.append(text)
        return self.strings.index(text)

    def sample_type(self, type_name, unit):
        self.body += _msg(1, _vint(1, self.s(type_name)) + _vint(2, self.s(unit)))

    def function(self, fid, name, filename=""):
        self.body += _msg(
            5, _vint(1, fid) + _vint(2, self.s(name)) + _vint(4, self.s(filename))
        )

    def location(self, lid, func_id, line, address=0):
        payload = _vint(1, lid) + _vint(3, address)
        payload += _msg(4, _vint(1, func_id) + _vint(2, line))
        self.body += _msg(4, payload)

    def sample(self, location_ids, values, labels=None, packed=True, num_labels=None):
        if packed:
            payload = _msg(1, b"".join(_varint(i) for i in location_ids))
            payload += _msg(2, b"".join(_varint(v) for v in values))
        else:
            payload = b"".join(_vint(1, i) for i in location_ids)
            payload += b"".join(_vint(2, v) for v in values)
        for key, value in (labels or {}).items():
            payload += _msg(3, _vint(1, self.s(key)) + _vint(2, self.s(value)))
        for key, num in (num_labels or {}).items():
            payload += _msg(3, _vint(1, self.s(key)) + _vint(3, num))
        self.body += _msg(2, payload)

    def duration(self, nanos):
        self.body += _vint(10, nanos)

    def build(self):
        return self.body + b"".join(_msg(6, s.encode()) for s in self.strings)


def _cpu_builder(packed=True):
    b = _Builder()
    b.sample_type("samples", "count")
    b.sample_type("cpu", "nanoseconds")
    b.function(1, "main.main", "main.go")
    b.function(2, "main.work", "work.go")
    b.location(1, 2, 20)
    b.location(2, 1, 10)
    b.sample([1, 2], [3, 3000], packed=packed)
    return b


def test_parse_plain_profile():
    profile = parse_profile(_cpu_builder().build())
    assert [(st.type, st.unit) for st in profile.sample_types] == [
        ("samples", "count"),
        ("cpu", "nanoseconds"),
    ]
    assert len(profile.samples) == 1
    sample = profile.samples[0]
    assert sample.values == [3, 3000]
    assert [loc.lines[0].function.name for loc in sample.locations] == ["main.work", "main.main"]
    assert sample.locations[0].lines[0].line == 20
    assert sample.locations[1].lines[0].function.filename == "main.go"


def test_gzip_and_plain_decode_identically():
    data = _cpu_builder().build()
    assert parse_profile(gzip.compress(data)) == parse_profile(data)


def test_unpacked_repeated_fields_match_packed():
    assert parse_profile(_cpu_builder(packed=False).build()) == parse_profile(
        _cpu_builder().build()
    )


def test_negative_values_are_preserved():
    b = _Builder()
    b.sample_type("delta", "count")
    b.function(1, "f")
    b.location(1, 1, 1)
    b.sample([1], [-5])
    assert parse_profile(b.build()).samples[0].values == [-5]


def test_string_labels_kept_numeric_labels_ignored():
    b = _Builder()
    b.sample_type("inuse_space", "bytes")
    b.function(1, "alloc")
    b.location(1, 1, 3)
    b.sample([1], [64], labels={"type": "Buffer"}, num_labels={"bytes": 64})
    assert parse_profile(b.build()).samples[0].labels == {"type": ["Buffer"]}


def test_function_objects_are_shared_between_locations():
    b = _Builder()
    b.sample_type("samples", "count")
    b.function(7, "shared")
    b.location(1, 7, 1)
    b.location(2, 7, 2)
    b.sample([1, 2], [1])
    sample = parse_profile(b.build()).samples[0]
    assert sample.locations[0].lines[0].function is sample.locations[1].lines[0].function


def test_line_without_function_has_none():
    b = _Builder()
    b.sample_type("samples", "count")
    b.location(1, 0, 0, address=0x1234)
    b.sample([1], [1])
    location = parse_profile(b.build()).samples[0].locations[0]
    assert location.lines[0].function is None
    assert location.address == 0x1234


def test_duration_is_decoded():
    b = _cpu_builder()
    b.duration(2_000_000_000)
    assert parse_profile(b.build()).duration_nanos == 2_000_000_000


def test_empty_input_raises():
    with pytest.raises(ProfileError, match="empty"):
        parse_profile(b"")


def test_garbage_raises():
    with pytest.raises(ProfileError):
        parse_profile(b"not a profile")


def test_value_count_mismatch_raises():
    b = _Builder()
    b.sample_type("samples", "count")
    b.sample_type("cpu", "nanoseconds")
    b.function(1, "f")
    b.location(1, 1, 1)
    b.sample([1], [1])
    with pytest.raises(ProfileError, match="mismatch"):
        parse_profile(b.build())


def test_unknown_location_raises():
    b = _Builder()
    b.sample_type("samples", "count")
    b.sample([9], [1])
    with pytest.raises(ProfileError, match="location ID 9"):
        parse_profile(b.build())


def test_unknown_function_raises():
    b = _Builder()
    b.sample_type("samples", "count")
    b.location(1, 42, 1)
    with pytest.raises(ProfileError, match="function ID 42"):
        parse_profile(b.build())


def test_fetch_relative_path_becomes_absolute(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "cpu.pb").write_bytes(b"x")
    source = fetch_profile("cpu.pb")
    assert source.path == os.path.join(os.getcwd(), "cpu.pb")
    assert source.temporary is False
    source.cleanup()
    assert (tmp_path / "cpu.pb").exists()


def test_fetch_file_uri(tmp_path):
    target = tmp_path / "heap.pb"
    target.write_bytes(b"heap-bytes")
    source = fetch_profile(target.as_uri())
    assert source.temporary is False
    assert os.path.samefile(source.path, target) is True
    with open(source.path, "rb") as handle:
        assert handle.read() == b"heap-bytes"


def test_fetch_file_uri_without_path_raises():
    with pytest.raises(ProfileError, match="invalid file path"):
        fetch_profile("file://")


def test_fetch_unsupported_scheme_raises():
    with pytest.raises(ProfileError, match="unsupported URI scheme 'ftp'"):
        fetch_profile("ftp://example.com/profile")


@pytest.fixture
def http_profile_server():
    payload = _cpu_builder().build()

    class Handler(http.server.BaseHTTPRequestHandler):
        def do_GET(self):
            if self.path == "/profile":
                self.send_response(200)
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)
            else:
                self.send_error(404)

        def log_message(self, *args):
            pass

    server = http.server.ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}", payload
    server.shutdown()
    server.server_close()


def test_fetch_http_downloads_to_temporary_file(http_profile_server):
    base, payload = http_profile_server
    source = fetch_profile(f"{base}/profile")
    assert source.temporary is True
    with open(source.path, "rb") as handle:
        assert handle.read() == payload
    assert load_profile(source.path) == parse_profile(payload)
    source.cleanup()
    assert not os.path.exists(source.path)


def test_fetch_http_context_manager_removes_file(http_profile_server):
    base, payload = http_profile_server
    with fetch_profile(f"{base}/profile") as source:
        path = source.path
        assert source.temporary is True
        with open(path, "rb") as handle:
            assert handle.read() == payload
    assert os.path.exists(path) is False


def test_fetch_http_error_status_raises(http_profile_server):
    base, _ = http_profile_server
    with pytest.raises(ProfileError, match="status code 404"):
        fetch_profile(f"{base}/missing")


def test_cleanup_tolerates_missing_file(tmp_path):
    source = ProfileFile(str(tmp_path / "gone"), temporary=True)
    source.cleanup()
    assert not (tmp_path / "gone").exists()


def test_load_profile_missing_file_raises(tmp_path):
    with pytest.raises(ProfileError, match="failed to open"):
        load_profile(str(tmp_path / "absent.pb"))


def test_load_profile_bad_content_raises(tmp_path):
    path = tmp_path / "bad.pb"
    path.write_bytes(b"not a profile")
    with pytest.raises(ProfileError, match="failed to parse"):
        load_profile(str(path))