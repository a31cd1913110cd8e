"""Rail Madad complaint record lifecycle: store, controller, enrichment."""

__version__ = "0.1.0"
