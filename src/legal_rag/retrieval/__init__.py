"""
Retrieval — semantic search over ingested chunks with citations.

Public surface
--------------
- :class:`SemanticRetriever` — embeds a query and searches a collection.
- :class:`Citation`, :class:`RetrievalResult`, :class:`MetadataFilter` — data models.
"""

from legal_rag.retrieval.models import Citation, MetadataFilter, RetrievalResult
from legal_rag.retrieval.retriever import SemanticRetriever

__all__ = [
    "Citation",
    "MetadataFilter",
    "RetrievalResult",
    "SemanticRetriever",
]
