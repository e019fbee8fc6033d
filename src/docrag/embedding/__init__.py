"""Embedding capabilities and tokenizers."""
