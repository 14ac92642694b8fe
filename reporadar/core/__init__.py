"""Core infrastructure (error tracking)."""
