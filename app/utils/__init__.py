"""Shared utilities: column types used by the models."""
