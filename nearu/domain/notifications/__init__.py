"""Device tokens and push delivery."""
