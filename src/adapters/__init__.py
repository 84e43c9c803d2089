"""Adapters for state persistence, feed sources and notification sinks."""
