"""Internal implementation of the index layer."""
