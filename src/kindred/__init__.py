"""Kindred: a conversational memory engine for chat agents."""

__version__ = "0.1.0"
