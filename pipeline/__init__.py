"""Pipeline components.

This package contains the warehouse → SQLite exporter, zstd packaging, the
snapshot builder, and the single-flight cache that publishes its output.
"""
