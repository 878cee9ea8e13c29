"""Price tracking, notifications and sales dashboard metrics."""

__version__ = "0.1.0"
