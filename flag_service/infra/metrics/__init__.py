"""Prometheus metrics registry and collectors."""

from prometheus_client import generate_latest

from .prometheus import REGISTRY

__all__ = ["REGISTRY", "generate_latest"]
