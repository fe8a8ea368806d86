"""Vendor inventory portal: derived-state engine, bulk updates and expiry sweeps."""

__version__ = "0.1.0"
