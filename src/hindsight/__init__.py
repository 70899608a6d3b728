"""Persistent LLM completion provider for the Hindsight memory service."""

__version__ = "0.1.0"
