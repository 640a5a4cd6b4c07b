"""Shared infrastructure helpers for the webhook engine service."""
