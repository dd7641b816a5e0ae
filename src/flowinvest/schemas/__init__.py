"""Pydantic schemas for requests and model analyses."""
