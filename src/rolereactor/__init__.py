"""
Role Reactor persistent state layer.

Resilient MongoDB access for the community bot: a reconnecting connection
manager, two in-process caches, typed repositories for every collection and a
JSON file store that keeps the bot working while the database is unreachable.
"""

__version__ = "0.1.0"
