"""HTTP surface for the order service."""
