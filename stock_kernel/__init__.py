"""
Stock Kernel - inventory stock ledger with compensating allocation.

Keeps spare-part quantities consistent while they are consumed and released by:
- Direct sale/purchase transactions
- Service orders and vehicle sales (reversible on edit/delete)
- Per-unit vehicle registration bounded by a model's declared quantity

Every quantity change is a compare-and-swap against a key-value store and is
mirrored by an append-only ledger entry.
"""

__version__ = "0.1.0"
