"""Domain layer: document model, service graph and lifecycle orchestration."""
