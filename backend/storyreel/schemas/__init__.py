"""Pydantic contracts for structured model output."""
