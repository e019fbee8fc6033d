"""DocRAG: document chunking, embedding and retrieval-augmented answers."""

__version__ = "0.1.0"
