"""legal_rag — concurrent embedding and vector-store ingestion for legal documents."""

__version__ = "0.1.0"
