"""Persistence layer: declarative base, morph registry and models."""
