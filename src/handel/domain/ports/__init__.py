"""Port interfaces (hexagonal architecture)."""
