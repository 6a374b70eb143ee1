"""Shared helpers: Google credentials and retry with backoff."""
