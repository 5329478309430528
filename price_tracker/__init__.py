"""Card price history ingestion and change-metric engine."""

__version__ = "0.1.0"
