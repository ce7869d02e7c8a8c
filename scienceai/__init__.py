"""Science AI backend: usage limits and citation formatting."""

__version__ = "1.0.0"
