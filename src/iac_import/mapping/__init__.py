"""Resource mapping and dependency ordering."""
