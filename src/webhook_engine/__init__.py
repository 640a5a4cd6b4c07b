"""Webhook delivery engine service."""
