#!/usr/bin/env python3
"""Script to (re)index or remove specifications in the knowledge store."""

import argparse
import asyncio
import sys
from datetime import timedelta
from typing import List, Optional

import structlog

from clarity.common.config import VectorStoreConfig
from clarity.common.logging import configure_logging
from clarity.records.database import Database, RecordStoreError
from clarity.records.specifications import PgSpecificationRepository
from clarity.records.usage import PgUsageRecorder
from clarity.vector_store.base import VectorStoreError
from clarity.vector_store.factory import create_knowledge_store
from clarity.vector_store.models import utc_now

logger = structlog.get_logger("reindex_specifications")


async def reindex_specifications(
    spec_ids: List[str],
    remove: bool = False,
    cleanup_days: Optional[int] = None,
    config: Optional[VectorStoreConfig] = None
) -> bool:
    """Index (or remove) each specification; returns ``False`` if any failed."""
    if not config:
        config = VectorStoreConfig()

    database = Database(
        dsn=config.database_dsn,
        pool_size=config.database_pool_size,
        command_timeout=config.database_command_timeout,
    )
    store = create_knowledge_store(
        config,
        specifications=PgSpecificationRepository(database),
        usage_recorder=PgUsageRecorder(database),
    )

    failures = 0
    try:
        provider = await store.start()
        if provider.name == "memory":
            logger.warning("Indexing into the in-memory provider; changes will not persist")

        for spec_id in spec_ids:
            try:
                if remove:
                    deleted = await store.remove_specification(spec_id)
                    logger.info("Specification removed", specification_id=spec_id, deleted=deleted)
                else:
                    doc_id = await store.index_specification(spec_id)
                    logger.info("Specification indexed", specification_id=spec_id, document_id=doc_id)
            except (VectorStoreError, RecordStoreError) as e:
                failures += 1
                logger.error("Specification reindex failed", specification_id=spec_id, error=str(e))

        if cleanup_days is not None:
            try:
                deleted = await store.cleanup(utc_now() - timedelta(days=cleanup_days))
                logger.info("Cleanup completed", older_than_days=cleanup_days, deleted=deleted)
            except VectorStoreError as e:
                failures += 1
                logger.error("Cleanup failed", older_than_days=cleanup_days, error=str(e))
    finally:
        await store.close()
        await database.close()

    return failures == 0


def main():
    """Main function for CLI."""
    parser = argparse.ArgumentParser(description="Reindex specifications in the knowledge store")
    parser.add_argument("spec_ids", nargs="*", help="Specification ids to process")
    parser.add_argument("--remove", action="store_true", help="Remove the specifications instead of indexing")
    parser.add_argument("--cleanup-days", type=int, help="Also delete documents older than this many days")

    args = parser.parse_args()
    if not args.spec_ids and args.cleanup_days is None:
        parser.error("nothing to do: pass specification ids and/or --cleanup-days")

    config = VectorStoreConfig()
    configure_logging("reindex_specifications", config.log_level, config.log_format, config.clarity_env)

    success = asyncio.run(reindex_specifications(
        spec_ids=args.spec_ids,
        remove=args.remove,
        cleanup_days=args.cleanup_days,
        config=config
    ))

    if success:
        print(f"Processed {len(args.spec_ids)} specification(s) successfully")
        sys.exit(0)
    else:
        print("Some specifications failed; see logs")
        sys.exit(1)


if __name__ == "__main__":
    main()
