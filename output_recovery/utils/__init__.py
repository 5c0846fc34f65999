"""Shared utilities: configuration, paths, statistics, retries."""
