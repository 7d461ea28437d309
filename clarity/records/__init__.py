"""Relational store access.

- ``database``: shared asyncpg pool and ``RecordStoreError``.
- ``specifications``: specification lookup with the latest version.
- ``usage``: usage records and the fire-and-forget ``UsageDispatcher``.
"""
