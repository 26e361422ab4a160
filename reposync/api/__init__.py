"""Falcon ASGI surface: health probes, webhook receiver and status."""
