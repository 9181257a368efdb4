"""Standard library: registries, run store, storage adapters and executors."""
