"""
Main package for the discipline catalog synchronization engine.

This is the root package that contains all modules including:
- core: Configuration, logging, data model and the synchronization engine
- data: Catalog storage
- scrapers: Aluno Online portal access and page parsing
"""

__version__ = "1.0.0"
