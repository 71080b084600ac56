"""Service layer: session identity, persistence gateway and crowdfund operations."""
