"""Audit log shipper: forwards audit events to an HTTPS log collector."""

__version__ = "0.1.0"
