import base64

import httpx

from couchstream.clients.db.DBClientInterface import DBClientInterface
from couchstream.helper.HelperConfig import HelperConfig
from couchstream.models.config import EnvConfig


class DBClientCouchdb(DBClientInterface):
    def __init__(self, helper_config: HelperConfig, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(helper_config=helper_config, transport=transport)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="url")
        self.username = self.get_config_val("USERNAME", default="", val_type="string")
        self.password = self.get_config_val("PASSWORD", default="", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Couchdb"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="url", default=None),
            EnvConfig(env_key="USERNAME", val_type="string", default=""),
            EnvConfig(env_key="PASSWORD", val_type="string", default=""),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self.username and self.password:
            credentials = base64.b64encode(f"{self.username}:{self.password}".encode("utf-8")).decode("ascii")
            return {"Authorization": f"Basic {credentials}"}
        else:
            return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/"

    def _get_endpoint_database(self, database: str) -> str:
        return f"{database}/"

    def _get_endpoint_document(self, database: str, document_id: str) -> str:
        return f"{database}/{document_id}"

    def _get_endpoint_attachment(self, database: str, document_id: str, attachment_name: str) -> str:
        return f"{database}/{document_id}/{attachment_name}"

    def _get_endpoint_bulk_docs(self, database: str) -> str:
        return f"{database}/_bulk_docs"

    def _get_endpoint_view(self, database: str, design_document: str, view: str) -> str:
        return f"{database}/_design/{design_document}/_view/{view}"

    def _get_endpoint_list(self, database: str, design_document: str, list_name: str, view: str) -> str:
        return f"{database}/_design/{design_document}/_list/{list_name}/{view}"

    def _get_endpoint_show(self, database: str, design_document: str, show_name: str, document_id: str) -> str:
        plain_url = f"{database}/_design/{design_document}/_show/{show_name}"
        if document_id:
            plain_url += f"/{document_id}"
        return plain_url

    def _get_endpoint_changes(self, database: str) -> str:
        return f"{database}/_changes"

    def _get_endpoint_index(self, database: str) -> str:
        return f"{database}/_index"

    def _get_endpoint_index_delete(self, database: str, design_doc: str, index_name: str) -> str:
        return f"{database}/_index/{design_doc}/json/{index_name}"

    def _get_endpoint_find(self, database: str) -> str:
        return f"{database}/_find/"

    def _get_endpoint_search(self, database: str, design_document: str, index: str) -> str:
        if not design_document.startswith("_design"):
            design_document = f"_design/{design_document}"
        return f"{database}/{design_document}/_search/{index}"

    def _get_endpoint_uuids(self) -> str:
        return "_uuids"

    def _get_endpoint_all_dbs(self) -> str:
        return "_all_dbs"
