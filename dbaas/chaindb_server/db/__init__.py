"""
Consistency engine for ChainDB.

This module handles:
- The per-database operation queue (total order of storage operations)
- Table descriptors compiled once into per-table record classes
- The per-table row cache (one live object per row)
- Database lifecycle and the explicit table registry

Invariants:
    - Storage is only touched from within operation queue turns
    - For any cached row id exactly one RowObject exists
    - Mutation hooks only observe successfully persisted mutations

How to change safely:
    - Keep cache mutations synchronous between suspension points
    - Re-validate cache state after every await (see Table._adopt)
"""

from .database import Database, TableRegistry
from .queue import OperationQueue
from .schema import ColumnDef, ColumnType, TableDescriptor
from .table import Mutation, RowObject, Table

__all__ = [
    "Database",
    "TableRegistry",
    "OperationQueue",
    "ColumnDef",
    "ColumnType",
    "TableDescriptor",
    "Mutation",
    "RowObject",
    "Table",
]
