"""
Ingestion — chunking, embedding, and upserting documents into the vector store.

This package converts extracted legal texts into embedded chunks stored
in a vector database, with bounded concurrency at the document, embedding
batch and upsert batch levels.
"""
