"""
ecanmesh — Observability Infrastructure

Structured logging setup.
"""

from ecanmesh.telemetry.logging import setup_logging

__all__ = ["setup_logging"]
