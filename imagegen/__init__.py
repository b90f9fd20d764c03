"""Resilient, cached access to a remote image generation service."""

__version__ = "1.0.0"
