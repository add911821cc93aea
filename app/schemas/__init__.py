"""
schemas/ — Pydantic request models for the fleet parts API

Provides input validation, auto-generated OpenAPI docs, and
consistent field-level error details across all endpoints.
"""
