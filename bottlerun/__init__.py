"""Gas bottle delivery dispatch: runs, manifests and deliveries."""
