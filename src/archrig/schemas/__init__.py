"""Packaged JSON schemas for manifests and run reports."""
