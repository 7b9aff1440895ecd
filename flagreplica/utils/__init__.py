"""Cross-cutting helpers: caching, health, logging."""
