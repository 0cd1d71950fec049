"""Location sampling, proximity evaluation and path-crossing tracking."""
