"""
Core package for the discipline catalog synchronization engine.

Holds configuration, credentials, logging, the error taxonomy, the data model,
and the components that drive a synchronization run.
"""
