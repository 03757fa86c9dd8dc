import httpx

from couchstream.clients.db.DBClientInterface import DBClientInterface
from couchstream.helper.HelperConfig import HelperConfig


class DBClientManager:
    """
    Builds one client per engine listed in DB_ENGINES and boots or closes them together.
    """

    def __init__(self, helper_config: HelperConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self._transport = transport
        self.clients = self._initialize_clients()

    def _get_engines_from_env(self) -> list[str]:
        """
        Engine names from DB_ENGINES, e.g. "[couchdb, cloudant]".

        Raises:
            ValueError: If the list is empty.
        """
        engines = [engine.strip().lower() for engine in self.helper_config.get_list_val("DB_ENGINES")]
        if not engines:
            raise ValueError("DB_ENGINES must name at least one engine.")
        return engines

    def _load_client_class(self, engine: str) -> type[DBClientInterface]:
        """
        Import ``couchstream.clients.db.<engine>.DBClient<Engine>``.

        Raises:
            ValueError: If the engine has no client module or class.
        """
        class_name = f"DBClient{engine.capitalize()}"
        try:
            module = __import__(f"couchstream.clients.db.{engine}.{class_name}", fromlist=[class_name])
            return getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported DB engine '{engine}': {e}") from e

    def _initialize_clients(self) -> list[DBClientInterface]:
        clients = []
        for engine in self._get_engines_from_env():
            client_class = self._load_client_class(engine)
            clients.append(client_class(helper_config=self.helper_config, transport=self._transport))
            self.logging.debug("Created %s client for engine '%s'", client_class.__name__, engine)
        return clients

    def get_clients(self) -> list[DBClientInterface]:
        return self.clients

    def get_client(self, engine: str) -> DBClientInterface:
        """
        The client of ``engine`` (case-insensitive).

        Raises:
            ValueError: If that engine is not configured.
        """
        wanted = engine.strip().lower()
        for client in self.clients:
            if client.get_engine_name() == wanted:
                return client
        raise ValueError(f"No DB client configured for engine '{engine}'.")

    async def boot(self) -> None:
        for client in self.clients:
            await client.boot()

    async def close(self) -> None:
        for client in self.clients:
            await client.close()
