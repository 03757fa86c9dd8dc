from typing import AsyncIterator

import httpx

from couchstream.clients.db.couchdb.DBClientCouchdb import DBClientCouchdb
from couchstream.clients.db.models.ApiKey import ApiKey
from couchstream.clients.db.models.errors import CouchConversionError
from couchstream.helper.HelperConfig import HelperConfig
from couchstream.models.config import EnvConfig
from couchstream.streaming.AsyncOperation import AsyncOperation, CancellationToken


class DBClientCloudant(DBClientCouchdb):
    """
    Cloudant speaks the CouchDB API and adds an account level admin API
    (API keys and database permissions) served from a separate host.
    """

    def __init__(self, helper_config: HelperConfig, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(helper_config=helper_config, transport=transport)
        self._admin_url = self.get_config_val("ADMIN_URL", default="https://cloudant.com", val_type="url")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Cloudant"

    def get_account(self) -> str:
        """
        Returns the account name, the first label of the base URL host. E.g. "acme" for "https://acme.cloudant.com/"
        """
        host = httpx.URL(self._base_url).host
        return host.split(".")[0]

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return super()._get_required_config() + [
            EnvConfig(env_key="ADMIN_URL", val_type="url", default="https://cloudant.com"),
        ]

    ################ ENDPOINTS ##################
    def _get_endpoint_api_keys(self) -> str:
        return f"{self._admin_url}_api/v2/api_keys"

    def _get_endpoint_set_permissions(self) -> str:
        return f"{self._admin_url}api/set_permissions"

    ##########################################
    ################# ADMIN ##################
    ##########################################

    def create_api_key(self, progress_token: str = "") -> AsyncOperation:
        """
        Generates a new API key.

        Args:
            progress_token (str): Tags the upload progress events.

        Returns:
            AsyncOperation: Yields one ApiKey carrying the new username and password.
        """
        url = self._get_endpoint_api_keys()

        async def produce(token: CancellationToken) -> AsyncIterator[ApiKey]:
            resp = await self._upload("POST", url, headers={"Content-Type": "application/json"}, progress_token=progress_token)
            response = self._json(resp.content)
            if not response.get("key") or response.get("password") is None:
                raise CouchConversionError(f"Unexpected API key response: {resp.text}")
            self.logging.info("Created API key %s.", response["key"])
            yield ApiKey(username=str(response["key"]), password=str(response["password"]))

        return self._operation("create api key", produce)

    def set_permissions(
        self,
        database: str,
        username: str,
        reader: bool = False,
        writer: bool = False,
        admin: bool = False,
        creator: bool = False,
        progress_token: str = "",
    ) -> AsyncOperation:
        """
        Grants a user (or API key) roles on a database.

        Args:
            database (str): The database.
            username (str): The user or API key.
            reader (bool): Grant _reader.
            writer (bool): Grant _writer.
            admin (bool): Grant _admin.
            creator (bool): Grant _creator.
            progress_token (str): Tags the upload progress events.

        Returns:
            AsyncOperation: Yields the server response (e.g. {"ok": true}).

        Raises:
            CouchValidationError: If the database or username is blank.
        """
        self._require(database, "database", "You must specify the database")
        self._require(username, "username", "You must specify the username")
        roles = [role for granted, role in ((reader, "_reader"), (writer, "_writer"), (admin, "_admin"), (creator, "_creator")) if granted]
        form: dict = {"database": f"{self.get_account()}/{database}", "username": username}
        if roles:
            form["roles"] = roles
        return self._json_operation(f"set permissions {database}", "POST", self._get_endpoint_set_permissions(), progress_token, data=form)
