"""Researcher profile ingestion: ORCID, PubMed and PMC evidence into a stored profile."""

__version__ = "0.1.0"
