"""
Data Agent

Natural-language-to-SQL pipeline for multi-tenant business analytics:
plan, decompose, retrieve, generate tenant-scoped SQL, execute with
self-correction, stitch and present results.
"""

__version__ = "0.1.0"
