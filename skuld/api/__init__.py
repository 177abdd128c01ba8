"""Skuld admin REST API."""
