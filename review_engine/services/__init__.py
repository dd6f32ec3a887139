"""Service layer for the review engine."""
