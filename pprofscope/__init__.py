"""Analyse Go pprof profiles: top-N reports, flame graph trees and memory leak detection."""

__version__ = "0.1.0"