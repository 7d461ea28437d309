#!/usr/bin/env python3
"""OpenSearch bootstrap script for the knowledge store.

Waits for the cluster to report ``green`` or ``yellow`` and creates the
knowledge index (k-NN vector mapping) through
``OpenSearchVectorProvider.initialize`` so the mapping lives in one place.
"""

import argparse
import asyncio
import sys
import time

import structlog

from clarity.common.config import VectorStoreConfig
from clarity.common.logging import configure_logging
from clarity.vector_store.base import ProviderInitError
from clarity.vector_store.embeddings import HashingEmbedder
from clarity.vector_store.opensearch import OpenSearchVectorProvider

logger = structlog.get_logger("opensearch_bootstrap")


async def wait_for_cluster(provider: OpenSearchVectorProvider, timeout: int = 60) -> None:
    """Wait for the OpenSearch cluster to be ready."""
    start_time = time.time()

    while time.time() - start_time < timeout:
        try:
            health = await provider.client.cluster.health()
            if health['status'] in ['green', 'yellow']:
                logger.info("OpenSearch cluster is ready", status=health['status'])
                return
            logger.info("Waiting for OpenSearch cluster", status=health['status'])
        except Exception as e:
            logger.warning("Failed to check cluster health", error=str(e))
        await asyncio.sleep(5)

    raise TimeoutError("OpenSearch cluster did not become ready within timeout")


async def bootstrap(args: argparse.Namespace, config: VectorStoreConfig) -> None:
    hosts = [host.strip() for host in args.hosts.split(",") if host.strip()]

    # Index creation never embeds, so the hashing embedder is enough here.
    provider = OpenSearchVectorProvider(
        hosts=hosts,
        embedder=HashingEmbedder(dimension=args.vector_dimension),
        index_name=args.index,
        vector_dimension=args.vector_dimension,
        username=args.username,
        password=args.password,
        verify_certs=args.verify_certs,
        ssl_assert_hostname=config.opensearch_ssl_assert_hostname,
        ssl_show_warn=config.opensearch_ssl_show_warn,
        request_timeout=config.vector_request_timeout,
    )

    try:
        await wait_for_cluster(provider, args.wait_timeout)
        await provider.initialize()
        logger.info(
            "OpenSearch bootstrap completed successfully",
            index_name=args.index,
            vector_dimension=args.vector_dimension
        )
    finally:
        await provider.close()


def main():
    """Main bootstrap function."""
    config = VectorStoreConfig()
    configure_logging("opensearch-bootstrap", config.log_level, config.log_format, config.clarity_env)

    parser = argparse.ArgumentParser(description="Bootstrap OpenSearch for the knowledge store")
    parser.add_argument("--hosts", default=config.opensearch_hosts, help="OpenSearch hosts (comma-separated)")
    parser.add_argument("--username", default=config.opensearch_username, help="OpenSearch username")
    parser.add_argument("--password", default=config.opensearch_password, help="OpenSearch password")
    parser.add_argument("--verify-certs", action="store_true", default=config.opensearch_verify_certs,
                        help="Verify SSL certificates")
    parser.add_argument("--index", default=config.opensearch_index, help="Knowledge index name")
    parser.add_argument("--vector-dimension", type=int, default=config.vector_dimension, help="Vector dimension")
    parser.add_argument("--wait-timeout", type=int, default=60, help="Cluster wait timeout in seconds")

    args = parser.parse_args()

    try:
        asyncio.run(bootstrap(args, config))
    except (ProviderInitError, TimeoutError) as e:
        logger.error("OpenSearch bootstrap failed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
