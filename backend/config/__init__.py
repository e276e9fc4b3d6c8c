"""Environment-based settings and filesystem paths."""
