"""Infrastructure adapters: constants and Kubernetes access."""
