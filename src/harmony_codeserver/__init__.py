"""Code-generation dispatch coordinator for Harmony auto-tuning sessions."""

__version__ = "0.1.0"
