"""Shared HTTP middleware."""
