"""
Library package for shelfsync.

Holds the metadata model, the shared cache and task registry, the scan
engine and the detail assembler.
"""
