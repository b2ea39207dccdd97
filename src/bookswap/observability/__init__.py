"""Metrics, Sentry and request tracing for the marketplace service."""
