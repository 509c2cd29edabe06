"""
Event Analytics Query Service

Cached, cursor-paged analytical reads over the event table, with async
jobs for queries too heavy for a request/response cycle.
"""

__version__ = "0.1.0"
