"""Change feed runner entry point.

Boots every configured database client and follows the change feed of
FEED_DATABASE, logging each change.

Usage:
    python -m feed.feed_runner
"""

import asyncio

from couchstream.clients.db.DBClientInterface import DBClientInterface
from couchstream.clients.db.DBClientManager import DBClientManager
from couchstream.clients.db.models.errors import CouchError
from couchstream.helper.HelperConfig import HelperConfig
from couchstream.logging.logging_setup import setup_logging
from feed.services.FeedService import FeedService


async def main() -> None:
    """Follow the configured change feed."""
    logger = setup_logging()
    config = HelperConfig(logger=logger)
    dbManager = DBClientManager(helper_config=config)

    # init clients
    db_clients = dbManager.get_clients()

    try:
        booted_db_clients: list[DBClientInterface] = []

        # at least one client needs to boot successfully
        for db_client in db_clients:
            try:
                await db_client.boot()
                await db_client.do_healthcheck()
                booted_db_clients.append(db_client)
            except CouchError as e:
                logger.error(f"Error booting DB client {db_client.get_engine_name()}: {e}. Skipping this client.")
        if not booted_db_clients:
            logger.error("No DB clients booted successfully. Aborting.")
            return

        feed_service = FeedService(helper_config=config, db_clients=booted_db_clients)
        try:
            await feed_service.do_follow()
        except CouchError as e:
            logger.error(f"Change feed of '{feed_service.database}' failed: {e}. Aborting.")
    finally:
        await dbManager.close()


if __name__ == "__main__":
    asyncio.run(main())
