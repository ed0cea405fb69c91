"""TamperGuard - file tampering detection for Linux hosts."""

__version__ = "1.0.0"
