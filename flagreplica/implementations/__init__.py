"""Backend implementations for the replica's stores."""
