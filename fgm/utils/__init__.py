"""Shared utilities: errors, logging and concurrency helpers."""
