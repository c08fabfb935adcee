"""Escalation gate package."""

from evalgate.gate.escalation import EscalationGate, ReviewSink, decide

__all__ = ["EscalationGate", "ReviewSink", "decide"]
