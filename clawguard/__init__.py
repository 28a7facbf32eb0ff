"""clawguard — risk classification and suspicious-sequence detection for agent activity logs."""

__version__ = "0.3.0"
