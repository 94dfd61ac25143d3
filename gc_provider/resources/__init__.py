"""Resource and data-source handlers."""
