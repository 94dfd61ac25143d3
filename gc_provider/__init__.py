"""gc_provider — declarative skill-group reconciliation for Genesys Cloud."""

__version__ = "0.3.0"
