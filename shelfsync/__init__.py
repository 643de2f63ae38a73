"""
Shelfsync - Private Media Library Metadata Synchronizer

A Python-based service that scans an OpenList directory tree for movie and
show folders, resolves each folder against TMDB, and keeps a durable,
incrementally-updated metadata index for building playable detail records.
"""

__version__ = "0.3.0"
__author__ = "shelfsync contributors"
