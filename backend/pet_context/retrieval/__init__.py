"""Retrieval components: vector index, lexical corpus, sources and the hybrid orchestrator."""

from .vector_index import InMemoryVectorIndex, SQLiteVectorIndex, VectorIndex
from .corpus import LexicalCorpus
from .formatter import ContextFormatter
from .sources import HtmlSearchSource, NaverEncyclopediaSource, VectorSource
from .orchestrator import HybridRetriever

__all__ = [
    "VectorIndex",
    "InMemoryVectorIndex",
    "SQLiteVectorIndex",
    "LexicalCorpus",
    "ContextFormatter",
    "HtmlSearchSource",
    "NaverEncyclopediaSource",
    "VectorSource",
    "HybridRetriever",
]
