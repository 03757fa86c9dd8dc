"""Change feed follower.

Follows the continuous change feed of one database on every booted client,
logs each change and resumes from the last sequence whenever the server
closes the feed.
"""

import asyncio
from typing import Awaitable, Callable

from couchstream.clients.db.DBClientInterface import DBClientInterface
from couchstream.clients.db.models.Document import ChangeEvent
from couchstream.helper.HelperConfig import HelperConfig

ChangeHandler = Callable[[DBClientInterface, ChangeEvent], Awaitable[None]]


class FeedService:
    """Follows the change feed of FEED_DATABASE on each client."""

    def __init__(
        self,
        helper_config: HelperConfig,
        db_clients: list[DBClientInterface],
        on_change: ChangeHandler | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._db_clients = db_clients
        self._on_change = on_change

        self.database = helper_config.get_string_val("FEED_DATABASE")
        self.include_docs = helper_config.get_bool_val("FEED_INCLUDE_DOCS", default=False)
        self.since = helper_config.get_string_val("FEED_SINCE", default="now")
        self.heartbeat = int(helper_config.get_number_val("FEED_HEARTBEAT", default=30000))
        self.max_restarts = int(helper_config.get_number_val("FEED_MAX_RESTARTS", default=3))

        # stats per engine
        self.changes_seen: dict[str, int] = {}
        self.last_sequences: dict[str, str] = {}

    ##########################################
    ################ FOLLOW ##################
    ##########################################

    async def do_follow(self) -> None:
        """Follow the feed on all clients concurrently until every feed has ended."""
        self.logging.info("Following changes of '%s' on %d client(s)...", self.database, len(self._db_clients), color="blue")
        await asyncio.gather(*(self.do_follow_client(client) for client in self._db_clients))
        for engine, count in self.changes_seen.items():
            self.logging.info("%s: %d change(s), last sequence %s.", engine, count, self.last_sequences.get(engine, ""), color="green")

    async def do_follow_client(self, client: DBClientInterface) -> str:
        """
        Follow the feed of one client, resuming from the last sequence up to FEED_MAX_RESTARTS times.

        Args:
            client (DBClientInterface): A booted client.

        Returns:
            str: The last sequence seen.

        Raises:
            CouchError: If a request or a feed line fails.
        """
        engine = client.get_engine_name()
        since = self.since
        restarts = 0
        self.changes_seen.setdefault(engine, 0)
        while True:
            async for event in client.changes(self.database, include_docs=self.include_docs, heartbeat=self.heartbeat, since=since):
                if event.since:
                    since = event.since
                if event.is_last_sequence:
                    self.logging.debug("%s: feed ended at sequence %s.", engine, since)
                    continue
                self.changes_seen[engine] += 1
                self.logging.info("%s: %s changed to revision %s (seq %s).", engine, event.document.id, event.document.revision, event.since, color="cyan")
                if self._on_change is not None:
                    await self._on_change(client, event)
            self.last_sequences[engine] = since

            if restarts >= self.max_restarts:
                self.logging.info("%s: feed closed, restart limit of %d reached.", engine, self.max_restarts)
                return since
            restarts += 1
            self.logging.warning("%s: feed closed by server, resuming from %s (%d/%d).", engine, since, restarts, self.max_restarts)
