"""Tab registry, lazy loading and the workspace that ties them together."""
