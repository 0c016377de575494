"""
ragpipe - retrieval-augmented generation pipeline.
Ingests text documents into a SQLite-backed vector store and answers similarity queries.
"""

__version__ = "1.0.0"
