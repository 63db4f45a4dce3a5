"""Pydantic value types shared by the engine services."""
