"""Transactional cart engine for conversational commerce."""

__version__ = "1.0.0"
