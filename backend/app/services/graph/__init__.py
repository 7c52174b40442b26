"""Knowledge graph building and caching."""

from .builder import build_knowledge_graph
from .cache import KnowledgeGraphCache

__all__ = ["build_knowledge_graph", "KnowledgeGraphCache"]
