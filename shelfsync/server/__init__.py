"""HTTP surface: library refresh, scan progress, detail and playback routes."""
