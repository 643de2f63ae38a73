"""Gateways to the remote listing service and the TMDB catalog."""
