"""Shared infrastructure: configuration, logging, observability, retries, errors."""
