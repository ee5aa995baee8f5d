"""Ayo Offline — LLM access for programs running behind a console."""

__version__ = "0.1.0"
