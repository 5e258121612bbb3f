"""Chat-to-RAG query bridge over Redis pub/sub."""

__version__ = "0.1.0"
