"""Catalog curation client: saved lists, swatches and image storage."""

__version__ = "0.1.0"
