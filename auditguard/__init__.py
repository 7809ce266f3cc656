"""Tamper-evident audit ledger, breach detection, alerting and SIEM export."""

__version__ = "0.1.0"
