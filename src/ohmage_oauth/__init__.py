# ohmage OAuth: authorization server for ohmage data streams and surveys.
# Created: 2026-10-19

__version__ = "0.1.0"
