"""Rethink: recursive thinking over a resilient multi-provider LLM dispatcher."""

__version__ = "0.1.0"
