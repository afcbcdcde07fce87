"""MindFlow — per-session browsing stress estimation and intervention engine."""

__version__ = "0.1.0"
