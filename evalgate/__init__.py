"""Interaction telemetry, confidence-gated escalation and evaluation harness."""

__version__ = "0.1.0"
