"""
arcrepo.client - Repository Client
====================================
"""

from arcrepo.client.repository import RestRepositoryClient

__all__ = ["RestRepositoryClient"]
