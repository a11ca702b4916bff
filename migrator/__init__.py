"""
Schema migration engine.

Applies named, reversible migrations to a relational database, records them
in a ledger table and groups each `up` run into a rollback-able batch.
"""

__version__ = "1.0.0"
