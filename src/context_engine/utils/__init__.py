"""Text, similarity and token utilities."""
