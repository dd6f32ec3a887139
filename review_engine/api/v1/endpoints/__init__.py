"""API endpoint modules for v1."""
