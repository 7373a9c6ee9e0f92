"""Schema validation and preflight checks."""
