"""Core contracts, record model, and pure algorithms."""
