"""Sub-commands of the irflow CLI."""
