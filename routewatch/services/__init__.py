"""Collector and proxy services."""
