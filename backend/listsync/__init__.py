"""Bulk list import pipeline with CRM sync and data retention."""

__version__ = "0.1.0"
