"""
Cache package for the Access Permissions engine.

Provides the in-memory evaluation cache that stores boolean decisions
under a TTL with single-entry LRU eviction, plus the pluggable strategies
that can veto caching or pick a TTL per decision.
"""
