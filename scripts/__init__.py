"""Utility scripts for operating the knowledge store.

Scripts include:
- ``opensearch_bootstrap.py``: wait for the cluster and create the knowledge index.
- ``reindex_specifications.py``: (re)index or remove specifications, with
  optional age-based cleanup.
"""
