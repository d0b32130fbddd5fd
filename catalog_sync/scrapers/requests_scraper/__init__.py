"""
Requests-based scraper module for the discipline catalog synchronization engine.

This package contains modules for authenticating against Aluno Online,
fetching discipline pages using HTTP requests and parsing the returned HTML.
"""

from .session import PortalSession, SessionAuthenticator
from .fetch_data import PortalFetcher
from .html_parser import parse_class_page, parse_discipline_list

__all__ = [
    "PortalSession",
    "SessionAuthenticator",
    "PortalFetcher",
    "parse_class_page",
    "parse_discipline_list",
]
