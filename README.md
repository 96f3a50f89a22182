# pprofscope

pprofscope reads Go pprof profiles and turns them into something you can
act on: top-N tables of the most expensive functions, allocation sites and
object types, hierarchical flame graph data, and a comparison of two heap
snapshots that points at growing types. It decodes the protobuf profile
format itself (plain or gzip-compressed) and needs nothing beyond the
standard library.

## Loading profiles

```python
from pprofscope.profile_source import fetch_profile, load_profile, parse_profile

profile = load_profile("cpu.pb.gz")          # read and decode a file
profile = parse_profile(raw_bytes)           # decode bytes you already have

with fetch_profile("https://example.com/debug/pprof/heap") as source:
    heap = load_profile(source.path)
```

`fetch_profile(uri)` accepts a plain local path (relative or absolute), a
`file://` URI, or an `http://` / `https://` URL. It returns a `ProfileFile`;
downloaded profiles live in a temporary file that `ProfileFile.cleanup()`
removes, which also happens when the `with` block ends. Problems fetching,
reading or decoding a profile raise `pprofscope.profile_source.ProfileError`.

## Analyses

Each analysis takes a `Profile`, a top-N limit and an output format, and
returns a string.

| Function | Module | Formats |
| --- | --- | --- |
| `analyze_cpu_profile` | `pprofscope.cpu` | `text`, `markdown`, `json`, `flamegraph-json` |
| `analyze_heap_profile` | `pprofscope.heap` | `text`, `markdown`, `json`, `flamegraph-json` |
| `analyze_allocs_profile` | `pprofscope.allocs` | `text`, `markdown`, `json`, `flamegraph-json` |
| `analyze_goroutine_profile` | `pprofscope.goroutine` | `text`, `markdown`, `json` |
| `analyze_mutex_profile`, `analyze_block_profile` | `pprofscope.placeholders` | placeholder notice only |

```python
from pprofscope.cpu import analyze_cpu_profile
from pprofscope.heap import analyze_heap_profile
from pprofscope.memory_leak import detect_potential_memory_leaks
from pprofscope.profile_source import load_profile

cpu = load_profile("cpu.pb.gz")
print(analyze_cpu_profile(cpu, 10, "text"))

before = load_profile("heap_before.pb.gz")
after = load_profile("heap_after.pb.gz")
print(analyze_heap_profile(after, 10, "markdown"))
print(detect_potential_memory_leaks(before, after, 0.1, 10))
```

The heap analysis reports by function, by allocation site and, when the
samples carry `type` or `object` labels, by object type. It prefers the
`inuse_space` column and falls back to `alloc_space`, then to the last
column. `detect_potential_memory_leaks` compares the `inuse_space` totals
per type label and lists types that grew by at least `threshold` (0.1 means
10 %; values of 0 or less mean 0.1), up to `limit` entries (10 if 0 or less).

`pprofscope.flamegraph.build_flame_graph_tree(profile, value_index)` returns
a `FlameGraphNode` tree rooted at a node named `root`; its `to_dict()`
output suits d3-flame-graph style viewers. For memory profiles the nodes
also carry object counts, average object size and the object type.

Analysis problems, such as an unsupported output format or a profile with
no usable sample type, raise `pprofscope.types.AnalysisError`.

`pprofscope.formatters` has `format_bytes` and `format_sample_value` for
rendering values the same way the reports do.

## Tool handlers

`pprofscope.handlers` wraps the above as request handlers that take a
mapping of arguments and return a `ToolResult` whose `content` is a list of
`{"type": "text", "text": ...}` items; failures raise `ToolError`.

* `handle_analyze_pprof({"profile_uri": ..., "profile_type": ..., "output_format": ..., "top_n": ...})`
  — `output_format` defaults to `text`, `top_n` to 5.
* `handle_detect_memory_leaks({"old_profile_uri": ..., "new_profile_uri": ..., "threshold": ..., "limit": ...})`
* `handle_generate_flamegraph({"profile_uri": ..., "profile_type": ..., "output_svg_path": ...})`
  — runs `go tool pprof -svg` and returns the output path and the SVG text.
  It needs the Go toolchain and Graphviz (`dot`) on `PATH`.

## What this package does not do

pprofscope has no command-line program and no server: nothing listens on
stdio or a network port, so the handlers must be called from your own code.
It cannot start or stop the interactive pprof web UI either.