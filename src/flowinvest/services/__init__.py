"""Prompting, extraction, sanitization and model-calling services."""
