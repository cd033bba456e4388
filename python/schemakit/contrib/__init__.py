"""Ready-made schemas."""
