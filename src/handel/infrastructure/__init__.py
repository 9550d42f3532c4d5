"""Infrastructure adapters: observability, messaging, control plane and deployers."""
