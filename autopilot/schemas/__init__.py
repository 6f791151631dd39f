"""Pydantic schemas for JSON columns, provider responses and API bodies."""
