"""Domain services: validation, graph building and lifecycle orchestration."""
