"""
Record Migration Engine

Moves records between two record stores, or between a store and a
directory of CSV files, keeping cross-object references intact even
though each store assigns its own identifiers.

Supports:
- Dependency-ordered execution plans with master-detail precedence
- Two-pass retrieval for filtered and related-only objects
- External identifier to target identifier mapping across passes
- Synchronous, Bulk API v1 and Bulk API v2 write engines
- Lifecycle hooks and a per-run JSON report
"""

__version__ = "0.1.0"
