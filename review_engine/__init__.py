"""Spaced-repetition scheduling engine."""
