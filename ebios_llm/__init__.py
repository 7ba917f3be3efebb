"""Resilient multi-provider LLM invocation layer for EBIOS RM risk analysis."""

__version__ = "0.1.0"
