"""Import directive generation."""
