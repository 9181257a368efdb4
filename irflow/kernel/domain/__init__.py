"""Domain models: registry entities, DAG payloads, runs and metrics."""
