"""
Scrapers package for the discipline catalog synchronization engine.

This package contains all portal access functionality including:
- Session authentication against Aluno Online
- Requests-based page fetching with retry
- HTML parsing into typed discipline records
"""
