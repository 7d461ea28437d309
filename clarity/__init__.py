"""Clarity knowledge store.

Subpackages:
- ``clarity.vector_store``: provider interface, in-memory and OpenSearch
  providers, and the ``VectorKnowledgeStore`` orchestrator.
- ``clarity.records``: relational store access (specifications, usage log).
- ``clarity.common``: configuration, logging and metrics.

Notes:
- Nothing here keeps global state; build a store from an explicit config.
"""
