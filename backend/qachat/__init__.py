"""Real-time presence and messaging core for the QA management platform."""

__version__ = "0.1.0"
