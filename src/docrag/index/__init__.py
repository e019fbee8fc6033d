"""Document ingestion and retrieval pipelines."""
