"""HTTP adapter over the gateway."""
