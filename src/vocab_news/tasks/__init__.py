"""Generation task queue: models, errors, sources and the lease-based queue."""
