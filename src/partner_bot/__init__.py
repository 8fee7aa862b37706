"""Authentication core for the Partner Center conversational bot."""

__version__ = "0.3.0"
