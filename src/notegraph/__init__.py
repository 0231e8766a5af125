"""
Notegraph - memory index over bullet-structured markdown notes.

Package structure:
- core: Configuration and logging
- memory: Parser, extractor, SQLite store, indexer, retrieval, context assembly
- cli: Command line entry point
"""

__version__ = "0.1.0"
