"""Approval workflow engine with SLA tracking and escalation."""

__version__ = "0.1.0"
