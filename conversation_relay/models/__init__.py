"""Pydantic response models for the relay's HTTP surface."""
