import json
from abc import abstractmethod
from concurrent.futures import Executor
from typing import Any, AsyncIterator, Callable

import httpx
from pydantic import BaseModel, TypeAdapter

from couchstream.clients.ClientInterface import ClientInterface
from couchstream.clients.db.models.Attachment import Attachment
from couchstream.clients.db.models.Document import ChangeEvent, Document
from couchstream.clients.db.models.errors import CouchConversionError, CouchValidationError
from couchstream.clients.db.lucene.LuceneQuery import LuceneQuery
from couchstream.clients.db.lucene.models import LuceneResult, LuceneRow
from couchstream.clients.db.models.Index import Index, IndexField
from couchstream.clients.db.models.SaveResult import SaveResult
from couchstream.helper.HelperConfig import HelperConfig
from couchstream.streaming.AsyncOperation import AsyncOperation, CancellationToken
from couchstream.streaming.ChangeFeedReader import ChangeFeedReader
from couchstream.streaming.DocumentStreamDecoder import DocumentStreamDecoder
from couchstream.streaming.ProgressBroadcaster import ProgressBroadcaster, ProgressSubscription
from couchstream.streaming.result_converter import convert_value

JSON_HEADERS = {"Content-Type": "application/json"}
RESERVED_KEYS = ("_id", "_rev", "_deleted")


class DBClientInterface(ClientInterface):
    """
    Engine-independent access to a CouchDB-style document database.

    Every public operation validates its arguments and builds its URL when it
    is called, raising CouchValidationError before anything is sent. The
    request itself is only made when the returned AsyncOperation is iterated,
    and every new iteration sends a new request. Transport and conversion
    errors are raised from the iteration.

    Example:
        async with DBClientCouchdb(helper_config) as client:
            async for document in client.view("shop", "orders", "by_customer", key="c-1", include_docs=True):
                print(document.id, document.item)
    """

    def __init__(self, helper_config: HelperConfig, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(helper_config=helper_config, transport=transport)
        self._progress = ProgressBroadcaster()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    @staticmethod
    def _require(value: Any, argument: str, message: str) -> None:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise CouchValidationError(message, argument=argument)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "db"
        """
        return "db"

    def subscribe_progress(self, request_token: str | None = None) -> ProgressSubscription:
        """
        Subscribes to the transfer progress of this client's requests.

        Args:
            request_token (str | None): Only receive events of requests started with this progress token. None receives all.

        Returns:
            ProgressSubscription: Async iterator of ProgressEvent; close it when done.
        """
        return self._progress.subscribe(request_token)

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_database(self, database: str) -> str:
        """
        Returns the endpoint path of a database (e.g. "mydb/")
        """
        pass

    @abstractmethod
    def _get_endpoint_document(self, database: str, document_id: str) -> str:
        """
        Returns the endpoint path of a document (e.g. "mydb/doc-1")
        """
        pass

    @abstractmethod
    def _get_endpoint_attachment(self, database: str, document_id: str, attachment_name: str) -> str:
        """
        Returns the endpoint path of a document attachment (e.g. "mydb/doc-1/photo.png")
        """
        pass

    @abstractmethod
    def _get_endpoint_bulk_docs(self, database: str) -> str:
        """
        Returns the endpoint path for bulk document requests (e.g. "mydb/_bulk_docs")
        """
        pass

    @abstractmethod
    def _get_endpoint_view(self, database: str, design_document: str, view: str) -> str:
        """
        Returns the endpoint path of a view (e.g. "mydb/_design/app/_view/by_type")
        """
        pass

    @abstractmethod
    def _get_endpoint_list(self, database: str, design_document: str, list_name: str, view: str) -> str:
        """
        Returns the endpoint path of a list function applied to a view.
        """
        pass

    @abstractmethod
    def _get_endpoint_show(self, database: str, design_document: str, show_name: str, document_id: str) -> str:
        """
        Returns the endpoint path of a show function applied to a document.
        """
        pass

    @abstractmethod
    def _get_endpoint_changes(self, database: str) -> str:
        """
        Returns the endpoint path of the change feed (e.g. "mydb/_changes")
        """
        pass

    @abstractmethod
    def _get_endpoint_index(self, database: str) -> str:
        """
        Returns the endpoint path for listing and creating query indexes (e.g. "mydb/_index")
        """
        pass

    @abstractmethod
    def _get_endpoint_index_delete(self, database: str, design_doc: str, index_name: str) -> str:
        """
        Returns the endpoint path for deleting a query index (e.g. "mydb/_index/ddoc/json/name")
        """
        pass

    @abstractmethod
    def _get_endpoint_find(self, database: str) -> str:
        """
        Returns the endpoint path for query requests (e.g. "mydb/_find/")
        """
        pass

    @abstractmethod
    def _get_endpoint_search(self, database: str, design_document: str, index: str) -> str:
        """
        Returns the endpoint path of a search index (e.g. "mydb/_design/app/_search/by_text")
        """
        pass

    @abstractmethod
    def _get_endpoint_uuids(self) -> str:
        """
        Returns the endpoint path for generating document ids (e.g. "_uuids")
        """
        pass

    @abstractmethod
    def _get_endpoint_all_dbs(self) -> str:
        """
        Returns the endpoint path for listing databases (e.g. "_all_dbs")
        """
        pass

    def _url(self, endpoint: str) -> str:
        return f"{self._get_base_url()}{endpoint.lstrip('/')}"

    ##########################################
    ############# URL BUILDING ###############
    ##########################################

    def create_get_url(self, document_id: str, database: str, stale_ok: bool) -> str:
        """
        Builds the absolute URL of a document.

        Args:
            document_id (str): The document id.
            database (str): The database name.
            stale_ok (bool): Append "?stale=ok".

        Returns:
            str: e.g. "http://localhost:5984/mydb/doc-1?stale=ok"

        Raises:
            CouchValidationError: If the database or the document id is blank.
        """
        self._require(database, "database", "You must specify the database")
        self._require(document_id, "document_id", "document_id cannot be empty")
        url = self._url(self._get_endpoint_document(database, document_id))
        if stale_ok:
            url += "?stale=ok"
        return url

    def create_key_query(self, key: str | None, start_key: str | None, end_key: str | None) -> str:
        """
        Builds the key part of a view query.

        Returns:
            str: 'key="k"', 'startkey="s"', 'startkey="s"&endkey="e"' or "".

        Raises:
            CouchValidationError: If key is combined with a range, or end_key is given without start_key.
        """
        key = key.strip() if key else ""
        start_key = start_key.strip() if start_key else ""
        end_key = end_key.strip() if end_key else ""
        if key and (start_key or end_key):
            raise CouchValidationError("key and start_key/end_key are mutually exclusive", argument="key")
        if key:
            return f'key="{key}"'
        if start_key and end_key:
            return f'startkey="{start_key}"&endkey="{end_key}"'
        if start_key:
            return f'startkey="{start_key}"'
        if end_key:
            raise CouchValidationError("You need to specify start_key as well when specifying end_key", argument="end_key")
        return ""

    def set_query_parameters(
        self,
        key: str | None,
        start_key: str | None,
        end_key: str | None,
        include_docs: bool,
        inclusive_end: bool,
        descending: bool,
        skip: int,
        limit: int,
    ) -> str:
        """
        Builds the query string shared by views, lists and shows.

        Returns:
            str: "" when nothing is set, otherwise "?" followed by the parameters.

        Raises:
            CouchValidationError: See create_key_query.
        """
        parameters = []
        if inclusive_end:
            parameters.append("inclusive_end=true")
        if descending:
            parameters.append("descending=true")
        if skip and skip > 0:
            parameters.append(f"skip={skip}")
        if limit and limit > 0:
            parameters.append(f"limit={limit}")
        if include_docs:
            parameters.append("include_docs=true")
        keys = self.create_key_query(key, start_key, end_key)
        if keys:
            parameters.append(keys)
        if not parameters:
            return ""
        return "?" + "&".join(parameters)

    def set_view_parameters(
        self,
        key: str | None,
        start_key: str | None,
        end_key: str | None,
        include_docs: bool,
        inclusive_end: bool,
        descending: bool,
        skip: int,
        limit: int,
        group_level: int = 0,
        reduce: bool = False,
        group: bool = False,
    ) -> str:
        """
        Builds the query string of a view request: the shared parameters plus grouping and reduce.

        ``group`` wins over ``reduce``. Without grouping, ``reduce=False`` sends "reduce=false" and
        ``reduce=True`` sends nothing, so the server reduces by default.
        """
        url = self.set_query_parameters(key, start_key, end_key, include_docs, inclusive_end, descending, skip, limit)
        separator = "&" if "?" in url else "?"
        if group:
            url += f"{separator}group=true"
            if group_level and group_level > 0:
                url += f"&group_level={group_level}"
        elif not reduce:
            url += f"{separator}reduce=false"
        return url

    def parse_changes_parameters(
        self,
        heartbeat: int | None = None,
        limit: int | None = None,
        since: str | None = None,
        timeout: int | None = None,
        descending: bool = False,
        filter: str | None = None,
        include_docs: bool = False,
        document_ids: list[str] | None = None,
    ) -> str:
        """
        Builds the query string of a continuous change feed.

        Returns:
            str: Always starts with "?feed=continuous".
        """
        url = "?feed=continuous"
        if heartbeat is not None:
            url += f"&heartbeat={heartbeat}"
        if limit is not None:
            url += f"&limit={limit}"
        if since is not None and str(since).strip():
            url += f"&since={since}"
        if timeout is not None:
            url += f"&timeout={timeout}"
        if descending:
            url += "&descending=true"
        if include_docs:
            url += "&include_docs=true"
        if filter is not None and filter.strip():
            url += f"&filter={filter}"
        if document_ids:
            url += "&document_ids=" + json.dumps(list(document_ids), separators=(",", ":"))
        return url

    @staticmethod
    def _append_stale(url: str, stale_ok: bool) -> str:
        if not stale_ok:
            return url
        return url + ("&" if "?" in url else "?") + "stale=ok"

    @staticmethod
    def _append_request_params(url: str, request_params: str | dict | None) -> str:
        if not request_params:
            return url
        if isinstance(request_params, dict):
            request_params = str(httpx.QueryParams(request_params))
        request_params = request_params.strip().lstrip("?&")
        if not request_params:
            return url
        return url + ("&" if "?" in url else "?") + request_params

    ##########################################
    ############# BODY BUILDING ##############
    ##########################################

    @staticmethod
    def _parse_body(body: str, argument: str = "json") -> dict:
        if body is None or not body.strip():
            raise CouchValidationError("Invalid json for saving", argument=argument)
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError as e:
            raise CouchValidationError(f"Invalid json for saving: {e}", argument=argument) from e
        if not isinstance(parsed, dict):
            raise CouchValidationError("Only JSON objects can be saved as documents", argument=argument)
        return parsed

    @staticmethod
    def _dump_body(body: dict) -> str:
        return json.dumps(body, separators=(",", ":"))

    @staticmethod
    def _with_reserved(body: dict, key: str, value: Any) -> dict:
        """Sets ``key`` and moves the reserved properties (_id, _rev, _deleted) to the front."""
        body = {**body, key: value}
        ordered = {k: body[k] for k in RESERVED_KEYS if k in body}
        ordered.update({k: v for k, v in body.items() if k not in RESERVED_KEYS})
        return ordered

    def serialize_item(self, item: Any) -> str:
        """
        Serializes a document body to JSON text.

        Args:
            item (Any): JSON object text, a dict, a pydantic model or a dataclass.

        Returns:
            str: The JSON text of the object.

        Raises:
            CouchValidationError: If the item is None or does not serialize to a JSON object.
        """
        if item is None:
            raise CouchValidationError("Cannot save None", argument="item")
        if isinstance(item, str):
            text = item
        elif isinstance(item, BaseModel):
            text = item.model_dump_json(by_alias=True)
        else:
            try:
                text = TypeAdapter(type(item)).dump_json(item, by_alias=True).decode("utf-8")
            except Exception as e:
                raise CouchValidationError(f"Cannot serialize {type(item).__name__}: {e}", argument="item") from e
        self._parse_body(text, argument="item")
        return text

    def set_rev(self, body: str, revision_id: str) -> str:
        """
        Inserts "_rev" as a leading property of the JSON body.

        Returns:
            str: The new body, or the unchanged body when revision_id is blank.

        Raises:
            CouchValidationError: If body is blank or not a JSON object.
        """
        parsed = self._parse_body(body)
        if not revision_id or not revision_id.strip():
            return body
        return self._dump_body(self._with_reserved(parsed, "_rev", revision_id))

    def set_deleted(self, body: str) -> str:
        """
        Inserts '"_deleted": true' into the JSON body.

        Raises:
            CouchValidationError: If body is blank or not a JSON object.
        """
        parsed = self._parse_body(body)
        return self._dump_body(self._with_reserved(parsed, "_deleted", True))

    async def set_id(self, body: str, document_id: str = "") -> str:
        """
        Inserts "_id" as the first property of the JSON body.

        When no id is given, one is fetched with a single _uuids request.

        Raises:
            CouchValidationError: If body is blank or not a JSON object.
            CouchTransportError: If fetching the id fails.
        """
        parsed = self._parse_body(body)
        if not document_id or not document_id.strip():
            document_id = await self.get_uuid()
        return self._dump_body(self._with_reserved(parsed, "_id", document_id))

    async def get_uuid(self) -> str:
        """
        Fetches one server generated document id.

        Returns:
            str: The first uuid returned by the server.

        Raises:
            CouchTransportError: If the request fails.
            CouchConversionError: If the response carries no uuid.
        """
        resp = await self.do_request(method="GET", url=self._url(self._get_endpoint_uuids()), additional_headers=JSON_HEADERS)
        uuids = self._json(resp.content).get("uuids") or []
        if not uuids:
            raise CouchConversionError("The server returned no uuids.")
        return str(uuids[0])

    def build_query_body(
        self,
        selector: dict | str,
        return_fields: list[str] | None = None,
        limit: int | None = None,
        skip: int | None = None,
        read_quorum: int = 1,
        sorting: list[IndexField] | None = None,
    ) -> dict:
        """
        Builds the body of a query (_find) request.

        Args:
            selector (dict | str): The selector, as dict or JSON text.
            return_fields (list[str] | None): Fields to return; None returns whole documents.
            limit (int | None): Maximum number of documents.
            skip (int | None): Number of documents to skip.
            read_quorum (int): Read quorum "r", only sent when not 1.
            sorting (list[IndexField] | None): Sort fields.

        Returns:
            dict: e.g. {"selector": {...}, "fields": [...], "limit": 10, "sort": [{"name": "asc"}]}

        Raises:
            CouchValidationError: If the selector is missing or not valid JSON.
        """
        if isinstance(selector, str):
            self._require(selector, "selector", "You must specify a selector")
            try:
                selector = json.loads(selector)
            except json.JSONDecodeError as e:
                raise CouchValidationError(f"Selector is not valid JSON: {e}", argument="selector") from e
        if not isinstance(selector, dict):
            raise CouchValidationError("Selector must be a JSON object", argument="selector")

        body: dict = {"selector": selector}
        if return_fields:
            body["fields"] = list(return_fields)
        if limit is not None and limit > 0:
            body["limit"] = limit
        if skip is not None and skip > 0:
            body["skip"] = skip
        if sorting:
            body["sort"] = [{field.field_name: field.sort_order} for field in sorting]
        if read_quorum != 1:
            body["r"] = read_quorum
        return body

    ##########################################
    ############### TRANSFERS ################
    ##########################################

    @staticmethod
    def _json(content: bytes | str) -> Any:
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise CouchConversionError(f"Response is not valid JSON: {e}") from e

    async def _download(self, url: str, progress_token: str = "") -> bytes:
        """Reads a GET response chunk by chunk and reports download progress against Content-Length."""
        self.logging.debug("GET %s", url)
        buffer = bytearray()
        async with self.do_stream(method="GET", url=url, additional_headers=JSON_HEADERS) as response:
            total = int(response.headers.get("Content-Length") or 0)
            async for chunk in response.aiter_bytes():
                buffer.extend(chunk)
                self._progress.report(len(buffer), total, progress_token, "download")
        return bytes(buffer)

    async def _upload(
        self,
        method: str,
        url: str,
        content: str | bytes | None = None,
        data: Any = None,
        headers: dict | None = None,
        progress_token: str = "",
    ) -> httpx.Response:
        """Sends a request with a body and reports upload progress once the body has been sent."""
        self.logging.debug("%s %s", method, url)
        resp = await self.do_request(method=method, url=url, content=content, data=data, additional_headers=headers)
        sent = len(resp.request.content)
        self._progress.report(sent, sent, progress_token, "upload")
        return resp

    def _operation(self, name: str, producer: Callable[[CancellationToken], AsyncIterator[Any]]) -> AsyncOperation:
        return AsyncOperation(producer, name=name, logger=self.logging)

    def _decode_operation(self, name: str, url: str, item_type: Any, executor: Executor | None, progress_token: str) -> AsyncOperation:
        async def produce(token: CancellationToken) -> AsyncIterator[Document]:
            payload = await self._download(url, progress_token)
            decoder = DocumentStreamDecoder(item_type=item_type, executor=executor, logger=self.logging)
            async for document in decoder.decode(payload):
                yield document

        return self._operation(name, produce)

    ##########################################
    ############### DOCUMENTS ################
    ##########################################

    def document(
        self,
        document_id: str,
        database: str,
        item_type: Any = Any,
        executor: Executor | None = None,
        progress_token: str = "",
        stale_ok: bool = True,
    ) -> AsyncOperation:
        """
        Fetches one document.

        Args:
            document_id (str): The id of the document.
            database (str): The database name.
            item_type (Any): Type the document body is converted to.
            executor (Executor | None): Runs the conversion in this executor.
            progress_token (str): Tags the download progress events.
            stale_ok (bool): Allow a stale read.

        Returns:
            AsyncOperation: Yields exactly one Document.

        Raises:
            CouchValidationError: If the database or document id is blank.
        """
        url = self.create_get_url(document_id, database, stale_ok)
        return self._decode_operation(f"document {database}/{document_id}", url, item_type, executor, progress_token)

    def save(self, database: str, item: Any, id: str = "", revision_id: str = "", progress_token: str = "") -> AsyncOperation:
        """
        Saves an object as a document.

        Args:
            database (str): The database to save to.
            item (Any): JSON object text, dict, pydantic model or dataclass.
            id (str): The document id. A server generated id is used when blank.
            revision_id (str): The current revision when updating an existing document.
            progress_token (str): Tags the upload progress events.

        Returns:
            AsyncOperation: Yields one SaveResult.

        Raises:
            CouchValidationError: If the database is blank or the item is not a JSON object.
        """
        self._require(database, "database", "You must specify a database to save to")
        body = self.serialize_item(item)
        url = self._url(self._get_endpoint_database(database))

        async def produce(token: CancellationToken) -> AsyncIterator[SaveResult]:
            text = await self.set_id(body, id)
            text = self.set_rev(text, revision_id)
            resp = await self._upload("POST", url, content=text, headers=JSON_HEADERS, progress_token=progress_token)
            yield SaveResult.from_response(self._json(resp.content))

        return self._operation(f"save {database}", produce)

    def delete_document(self, document_id: str, database: str, revision_id: str, progress_token: str = "") -> AsyncOperation:
        """
        Deletes a document.

        Returns:
            AsyncOperation: Yields one SaveResult with the revision of the deletion.

        Raises:
            CouchValidationError: If the database, document id or revision is blank.
        """
        self._require(database, "database", "You must specify a database to delete from")
        self._require(document_id, "document_id", "You must specify a document id to delete")
        self._require(revision_id, "revision_id", "You must specify the revision id of the document")
        url = self._url(self._get_endpoint_document(database, document_id)) + f"?rev={revision_id}"

        async def produce(token: CancellationToken) -> AsyncIterator[SaveResult]:
            resp = await self._upload("DELETE", url, headers=JSON_HEADERS, progress_token=progress_token)
            yield SaveResult.from_response(self._json(resp.content))

        return self._operation(f"delete {database}/{document_id}", produce)

    def bulk_save(self, database: str, documents: list[Document], progress_token: str = "") -> AsyncOperation:
        """
        Saves several documents with one _bulk_docs request.

        Documents with an id and revision update the stored document; the others are created.

        Returns:
            AsyncOperation: Yields one SaveResult per document. Rows that failed carry an error.

        Raises:
            CouchValidationError: If the database is blank, documents is None or a body is not a JSON object.
        """
        self._require(database, "database", "You must specify a database to save to")
        if documents is None:
            raise CouchValidationError("Cannot save None", argument="documents")
        bodies = []
        for document in documents:
            body = self._parse_body(self.serialize_item(document.item if document.item is not None else {}), argument="documents")
            if document.id:
                body = self._with_reserved(body, "_id", document.id)
            if document.revision:
                body = self._with_reserved(body, "_rev", document.revision)
            bodies.append(body)
        return self._bulk_operation(f"bulk save {database}", database, bodies, progress_token)

    def bulk_delete(self, database: str, documents: list[Document], progress_token: str = "") -> AsyncOperation:
        """
        Deletes several documents with one _bulk_docs request.

        Returns:
            AsyncOperation: Yields one SaveResult per document. Rows that failed carry an error.

        Raises:
            CouchValidationError: If the database is blank, or a document lacks its id or revision.
        """
        self._require(database, "database", "You must specify a database to delete from")
        if documents is None:
            raise CouchValidationError("Cannot delete None", argument="documents")
        bodies = []
        for document in documents:
            if not document.id or not document.revision:
                raise CouchValidationError("All documents need to have both revision and id to be deleted", argument="documents")
            body = self._parse_body(self.serialize_item(document.item if document.item is not None else {}), argument="documents")
            body = self._with_reserved(body, "_id", document.id)
            body = self._with_reserved(body, "_rev", document.revision)
            body = self._with_reserved(body, "_deleted", True)
            bodies.append(body)
        return self._bulk_operation(f"bulk delete {database}", database, bodies, progress_token)

    def _bulk_operation(self, name: str, database: str, bodies: list[dict], progress_token: str) -> AsyncOperation:
        url = self._url(self._get_endpoint_bulk_docs(database))
        payload = self._dump_body({"docs": bodies})

        async def produce(token: CancellationToken) -> AsyncIterator[SaveResult]:
            resp = await self._upload("POST", url, content=payload, headers=JSON_HEADERS, progress_token=progress_token)
            rows = self._json(resp.content)
            if not isinstance(rows, list):
                raise CouchConversionError(f"Unexpected _bulk_docs response: {resp.text}")
            failed = 0
            for row in rows:
                result = SaveResult.from_response(row)
                if result.has_error:
                    failed += 1
                yield result
            if failed:
                self.logging.warning("%s: %d of %d documents failed.", name, failed, len(rows))

        return self._operation(name, produce)

    ##########################################
    ################# VIEWS ##################
    ##########################################

    def view(
        self,
        database: str,
        design_document: str,
        view: str,
        key: str = "",
        start_key: str = "",
        end_key: str = "",
        include_docs: bool = False,
        inclusive_end: bool = False,
        descending: bool = False,
        limit: int = 0,
        skip: int = 0,
        item_type: Any = Any,
        executor: Executor | None = None,
        progress_token: str = "",
        stale_ok: bool = True,
        group_level: int = 0,
        reduce: bool = False,
        group: bool = False,
    ) -> AsyncOperation:
        """
        Queries a view and yields one Document per row.

        Args:
            database (str): The database the view belongs to.
            design_document (str): The design document name, without "_design/".
            view (str): The view name.
            key (str): Only rows with this key. Excludes start_key/end_key.
            start_key (str): Start of a key range.
            end_key (str): End of a key range; needs start_key.
            include_docs (bool): Rows carry the full documents.
            inclusive_end (bool): Include rows matching end_key.
            descending (bool): Reverse the row order.
            limit (int): Maximum number of rows, 0 for all.
            skip (int): Number of rows to skip.
            item_type (Any): Type every row is converted to.
            executor (Executor | None): Converts rows in this executor; rows are then yielded in completion order.
            progress_token (str): Tags the download progress events.
            stale_ok (bool): Allow a stale index.
            group_level (int): Group level when grouping.
            reduce (bool): Run the reduce function. False (the default) asks for the mapped rows.
            group (bool): Group the reduce results.

        Returns:
            AsyncOperation: Yields the rows as Documents.

        Raises:
            CouchValidationError: If a name is blank or the key arguments conflict.
        """
        self._require(database, "database", "You must specify the database")
        self._require(design_document, "design_document", "You must specify a design document")
        self._require(view, "view", "You must specify a view name")
        url = self._url(self._get_endpoint_view(database, design_document, view))
        url += self.set_view_parameters(key, start_key, end_key, include_docs, inclusive_end, descending, skip, limit, group_level, reduce, group)
        url = self._append_stale(url, stale_ok)
        return self._decode_operation(f"view {database}/{design_document}/{view}", url, item_type, executor, progress_token)

    def view_list(
        self,
        database: str,
        design_document: str,
        list_name: str,
        view: str,
        key: str = "",
        start_key: str = "",
        end_key: str = "",
        include_docs: bool = False,
        inclusive_end: bool = False,
        descending: bool = False,
        limit: int = 0,
        skip: int = 0,
        item_type: Any = Any,
        executor: Executor | None = None,
        progress_token: str = "",
        stale_ok: bool = True,
        request_params: str | dict | None = None,
    ) -> AsyncOperation:
        """
        Runs a list function over a view. The list output is decoded like a view response.

        Args:
            request_params (str | dict | None): Additional query parameters ("a=1&b=2" or a dict).

        Returns:
            AsyncOperation: Yields the decoded Documents.

        Raises:
            CouchValidationError: If a name is blank or the key arguments conflict.
        """
        self._require(database, "database", "You must specify the database")
        self._require(design_document, "design_document", "You must specify a design document")
        self._require(view, "view", "You must specify a view name")
        self._require(list_name, "list_name", "You must specify a list name")
        url = self._url(self._get_endpoint_list(database, design_document, list_name, view))
        url += self.set_query_parameters(key, start_key, end_key, include_docs, inclusive_end, descending, skip, limit)
        url = self._append_stale(url, stale_ok)
        url = self._append_request_params(url, request_params)
        return self._decode_operation(f"list {database}/{design_document}/{list_name}/{view}", url, item_type, executor, progress_token)

    def show(
        self,
        database: str,
        design_document: str,
        show_name: str,
        document_id: str = "",
        key: str = "",
        start_key: str = "",
        end_key: str = "",
        include_docs: bool = False,
        inclusive_end: bool = False,
        descending: bool = False,
        limit: int = 0,
        skip: int = 0,
        item_type: Any = Any,
        executor: Executor | None = None,
        progress_token: str = "",
        stale_ok: bool = True,
        request_params: str | dict | None = None,
    ) -> AsyncOperation:
        """
        Runs a show function on a document. The output is decoded like a document response.

        Returns:
            AsyncOperation: Yields the decoded Documents.

        Raises:
            CouchValidationError: If a name is blank or the key arguments conflict.
        """
        self._require(database, "database", "You must specify the database")
        self._require(design_document, "design_document", "You must specify a design document")
        self._require(show_name, "show_name", "You must specify a show name")
        url = self._url(self._get_endpoint_show(database, design_document, show_name, document_id or ""))
        url += self.set_query_parameters(key, start_key, end_key, include_docs, inclusive_end, descending, skip, limit)
        url = self._append_stale(url, stale_ok)
        url = self._append_request_params(url, request_params)
        return self._decode_operation(f"show {database}/{design_document}/{show_name}", url, item_type, executor, progress_token)

    ##########################################
    ############## ATTACHMENTS ###############
    ##########################################

    def attachments(self, document_id: str, database: str, stale_ok: bool = True) -> AsyncOperation:
        """
        Lists the attachments of a document (name, type, size, digest and URL).

        Returns:
            AsyncOperation: Yields one Attachment per attachment of the document.

        Raises:
            CouchValidationError: If the database or document id is blank.
        """
        url = self.create_get_url(document_id, database, stale_ok)
        return self._operation(f"attachments {database}/{document_id}", lambda token: self._iter_attachments(url, stale_ok))

    async def _iter_attachments(self, document_url: str, stale_ok: bool) -> AsyncIterator[Attachment]:
        document = self._json(await self._download(document_url))
        if not isinstance(document, dict):
            raise CouchConversionError("Document response is not an object.")
        base = document_url.split("?stale=ok")[0]
        for name, meta in (document.get("_attachments") or {}).items():
            meta = meta or {}
            url = f"{base}/{name}"
            if stale_ok:
                url += "?stale=ok"
            yield Attachment(
                name=name,
                content_type=meta.get("content_type"),
                length=int(meta.get("length") or 0),
                digest=meta.get("digest"),
                url=url,
            )

    def attachment(self, document_id: str, attachment_name: str, database: str, stale_ok: bool = True) -> AsyncOperation:
        """
        Fetches the bytes of one attachment.

        Returns:
            AsyncOperation: Yields the attachment content once.

        Raises:
            CouchValidationError: If the database, document id or attachment name is blank.
        """
        self._require(database, "database", "You must specify the database")
        self._require(document_id, "document_id", "document_id cannot be empty")
        self._require(attachment_name, "attachment_name", "You must specify an attachment name")
        url = self._url(self._get_endpoint_attachment(database, document_id, attachment_name))
        url = self._append_stale(url, stale_ok)

        async def produce(token: CancellationToken) -> AsyncIterator[bytes]:
            yield await self._download(url)

        return self._operation(f"attachment {database}/{document_id}/{attachment_name}", produce)

    def attachment_data(self, attachment: Attachment) -> AsyncOperation:
        """
        Fetches the bytes of an attachment returned by attachments().

        Raises:
            CouchValidationError: If the attachment has no URL.
        """
        if attachment is None:
            raise CouchValidationError("attachment cannot be None", argument="attachment")
        self._require(attachment.url, "attachment", "The attachment has no URL")

        async def produce(token: CancellationToken) -> AsyncIterator[bytes]:
            yield await self._download(attachment.url)

        return self._operation(f"attachment data {attachment.name}", produce)

    def attachments_data(self, document_id: str, database: str, stale_ok: bool = True, attachment_name: str | None = None) -> AsyncOperation:
        """
        Fetches the bytes of every attachment of a document, or only of the one named ``attachment_name``.

        Returns:
            AsyncOperation: Yields the content of each attachment, one request per attachment.
        """
        url = self.create_get_url(document_id, database, stale_ok)

        async def produce(token: CancellationToken) -> AsyncIterator[bytes]:
            async for attachment in self._iter_attachments(url, stale_ok):
                if attachment_name is not None and attachment.name != attachment_name:
                    continue
                if token.cancelled:
                    return
                yield await self._download(attachment.url)

        return self._operation(f"attachments data {database}/{document_id}", produce)

    def save_attachment(
        self,
        database: str,
        document_id: str,
        content_type: str,
        attachment: bytes,
        attachment_name: str,
        revision_id: str = "",
        progress_token: str = "",
    ) -> AsyncOperation:
        """
        Uploads an attachment. The document is created when it does not exist.

        Args:
            database (str): The database.
            document_id (str): The document to attach to.
            content_type (str): MIME type of the attachment.
            attachment (bytes): The content.
            attachment_name (str): The attachment name.
            revision_id (str): The current revision when the document exists.
            progress_token (str): Tags the upload progress events.

        Returns:
            AsyncOperation: Yields one SaveResult with the new document revision.

        Raises:
            CouchValidationError: If a required argument is missing.
        """
        self._require(database, "database", "You must specify a database to save to")
        if attachment is None:
            raise CouchValidationError("Cannot save None attachments", argument="attachment")
        self._require(document_id, "document_id", "You must specify a document id for the attachment")
        self._require(attachment_name, "attachment_name", "You must specify an attachment name")
        url = self._url(self._get_endpoint_attachment(database, document_id, attachment_name))
        if revision_id and revision_id.strip():
            url += f"?rev={revision_id}"
        headers = {"Content-Type": content_type or "application/octet-stream"}

        async def produce(token: CancellationToken) -> AsyncIterator[SaveResult]:
            resp = await self._upload("PUT", url, content=attachment, headers=headers, progress_token=progress_token)
            yield SaveResult.from_response(self._json(resp.content))

        return self._operation(f"save attachment {database}/{document_id}/{attachment_name}", produce)

    ##########################################
    ################ CHANGES #################
    ##########################################

    def changes(
        self,
        database: str,
        document_ids: list[str] | None = None,
        filter: str | None = None,
        include_docs: bool = False,
        heartbeat: int | None = None,
        limit: int | None = None,
        since: str | None = None,
        timeout: int | None = None,
        descending: bool = False,
        item_type: Any = Any,
        executor: Executor | None = None,
    ) -> AsyncOperation:
        """
        Follows the continuous change feed of a database.

        The feed ends with a ChangeEvent whose document is empty (``is_last_sequence``)
        when the server closes it; pass its ``since`` to resume.

        Args:
            database (str): The database to follow.
            document_ids (list[str] | None): Only changes of these documents.
            filter (str | None): A filter function ("ddoc/filter").
            include_docs (bool): Convert the changed documents to ``item_type``.
            heartbeat (int | None): Heartbeat interval in milliseconds.
            limit (int | None): Maximum number of changes.
            since (str | None): Start after this sequence.
            timeout (int | None): Server side timeout in milliseconds.
            descending (bool): Reverse order.
            item_type (Any): Type the included documents are converted to.
            executor (Executor | None): Runs the conversions in this executor; order is kept.

        Returns:
            AsyncOperation: Yields ChangeEvents until the feed ends or the subscription is cancelled.

        Raises:
            CouchValidationError: If the database is blank.
        """
        self._require(database, "database", "You must specify a database for the feed")
        url = self._url(self._get_endpoint_changes(database))
        url += self.parse_changes_parameters(heartbeat, limit, since, timeout, descending, filter, include_docs, document_ids)
        reader = ChangeFeedReader(item_type=item_type, include_docs=include_docs, executor=executor, logger=self.logging)

        async def produce(token: CancellationToken) -> AsyncIterator[ChangeEvent]:
            self.logging.debug("GET %s", url)
            # a continuous feed may stay silent for long, only connecting is bounded
            feed_timeout = httpx.Timeout(self.timeout, read=None)
            async with self.do_stream(method="GET", url=url, additional_headers=JSON_HEADERS, timeout=feed_timeout) as response:
                async for event in reader.read(response.aiter_lines(), token):
                    yield event

        return self._operation(f"changes {database}", produce)

    ##########################################
    ############ QUERY / INDEXES #############
    ##########################################

    def list_indexes(self, database: str) -> AsyncOperation:
        """
        Lists the query indexes of a database (search indexes are not included).

        Returns:
            AsyncOperation: Yields one Index per index.
        """
        self._require(database, "database", "You must specify the database")
        url = self._url(self._get_endpoint_index(database))

        async def produce(token: CancellationToken) -> AsyncIterator[Index]:
            response = self._json(await self._download(url))
            for entry in response.get("indexes") or []:
                yield Index.from_response(entry)

        return self._operation(f"list indexes {database}", produce)

    def create_index(self, database: str, index: Index, overwrite: bool = False) -> AsyncOperation:
        """
        Creates a query index.

        Args:
            database (str): The database to index.
            index (Index): The index definition.
            overwrite (bool): Delete and recreate the index when it already exists.

        Returns:
            AsyncOperation: Yields True when the index was created, False when it already existed.

        Raises:
            CouchValidationError: If the database is blank, the index has no fields, or overwrite lacks the index name/design doc.
        """
        self._require(database, "database", "You must specify the database")
        if index is None or not index.fields:
            raise CouchValidationError("The index needs at least one field", argument="index")
        if overwrite and (not index.name or not index.design_doc):
            raise CouchValidationError("Overwriting an index needs its name and design document", argument="index")
        url = self._url(self._get_endpoint_index(database))
        body = self._dump_body(index.to_request_body())

        async def produce(token: CancellationToken) -> AsyncIterator[bool]:
            result = await self._post_index(url, body)
            if result == "exists" and overwrite:
                self.logging.info("Index %s exists in %s, recreating it.", index.name, database)
                await self.do_request(
                    method="DELETE",
                    url=self._url(self._get_endpoint_index_delete(database, index.design_doc, index.name)),
                    additional_headers=JSON_HEADERS,
                )
                result = await self._post_index(url, body)
            yield result == "created"

        return self._operation(f"create index {database}", produce)

    async def _post_index(self, url: str, body: str) -> str:
        resp = await self.do_request(method="POST", url=url, content=body, additional_headers=JSON_HEADERS)
        result = str(self._json(resp.content).get("result") or "").lower()
        if result not in ("created", "exists"):
            raise CouchConversionError(f"Unexpected index creation result: {resp.text}")
        return result

    def delete_index(self, database: str, design_doc: str, index_name: str) -> AsyncOperation:
        """
        Deletes a query index.

        Returns:
            AsyncOperation: Yields the server response (e.g. {"ok": true}).
        """
        self._require(database, "database", "You must specify the database")
        self._require(design_doc, "design_doc", "You must specify the design document of the index")
        self._require(index_name, "index_name", "You must specify the index name")
        url = self._url(self._get_endpoint_index_delete(database, design_doc, index_name))
        return self._json_operation(f"delete index {database}/{index_name}", "DELETE", url)

    def query_index(
        self,
        database: str,
        selector: dict | str,
        return_fields: list[str] | None = None,
        limit: int | None = None,
        skip: int | None = None,
        read_quorum: int = 1,
        sorting: list[IndexField] | None = None,
        item_type: Any = Any,
    ) -> AsyncOperation:
        """
        Runs a query (_find) and yields every matching document converted to ``item_type``.

        Raises:
            CouchValidationError: If the database is blank or the selector is invalid.
        """
        self._require(database, "database", "You must specify the database")
        body = self._dump_body(self.build_query_body(selector, return_fields, limit, skip, read_quorum, sorting))
        url = self._url(self._get_endpoint_find(database))

        async def produce(token: CancellationToken) -> AsyncIterator[Any]:
            resp = await self.do_request(method="POST", url=url, content=body, additional_headers=JSON_HEADERS)
            response = self._json(resp.content)
            if response.get("warning"):
                self.logging.warning("Query on %s: %s", database, response["warning"])
            for doc in response.get("docs") or []:
                yield convert_value(doc, item_type)

        return self._operation(f"query {database}", produce)

    ##########################################
    ################# SEARCH #################
    ##########################################

    def search(self) -> LuceneQuery:
        """
        Starts a search query on this client.

        Example:
            result = await (
                client.search()
                .database("library")
                .design_document("search")
                .index("by_text")
                .and_("type", "book")
                .or_("author", "smith")
                .execute()
                .first()
            )
        """
        return LuceneQuery.session(self)

    def search_operation(
        self,
        database: str,
        design_document: str,
        index: str,
        params: list[tuple[str, str]],
        include_docs: bool = False,
        item_type: Any = Any,
    ) -> AsyncOperation:
        """
        Runs a search request built by LuceneQuery and yields one LuceneResult.
        """
        self._require(database, "database", "You must specify the database")
        self._require(design_document, "design_document", "You must specify a design document")
        self._require(index, "index", "You must specify a search index")
        url = self._url(self._get_endpoint_search(database, design_document, index))

        async def produce(token: CancellationToken) -> AsyncIterator[LuceneResult]:
            self.logging.debug("GET %s %s", url, params)
            resp = await self.do_request(method="GET", url=url, params=params, additional_headers=JSON_HEADERS)
            response = self._json(resp.content)
            rows = []
            for row in response.get("rows") or []:
                fields = row.get("fields") or {}
                doc = convert_value(row.get("doc"), item_type) if include_docs and row.get("doc") is not None else None
                rows.append(LuceneRow(
                    id=str(row.get("id") or ""),
                    order=[float(o) for o in row.get("order") or [] if isinstance(o, (int, float))],
                    fields=fields if not include_docs else {},
                    doc=doc,
                ))
            yield LuceneResult(total_rows=int(response.get("total_rows") or 0), bookmark=response.get("bookmark"), rows=rows)

        return self._operation(f"search {database}/{design_document}/{index}", produce)

    ##########################################
    ################# ADMIN ##################
    ##########################################

    def _json_operation(self, name: str, method: str, url: str, progress_token: str = "", data: Any = None) -> AsyncOperation:
        async def produce(token: CancellationToken) -> AsyncIterator[dict]:
            resp = await self._upload(method, url, data=data, headers=None if data is not None else JSON_HEADERS, progress_token=progress_token)
            yield self._json(resp.content)

        return self._operation(name, produce)

    def create_database(self, database: str, progress_token: str = "") -> AsyncOperation:
        """
        Creates a database.

        Returns:
            AsyncOperation: Yields the server response (e.g. {"ok": true}).
        """
        self._require(database, "database", "You must specify a database to create")
        return self._json_operation(f"create database {database}", "PUT", self._url(self._get_endpoint_database(database)), progress_token)

    def delete_database(self, database: str, progress_token: str = "") -> AsyncOperation:
        """
        Deletes a database.

        Returns:
            AsyncOperation: Yields the server response (e.g. {"ok": true}).
        """
        self._require(database, "database", "You must specify a database to delete")
        return self._json_operation(f"delete database {database}", "DELETE", self._url(self._get_endpoint_database(database)), progress_token)

    def databases(self) -> AsyncOperation:
        """
        Lists all databases.

        Returns:
            AsyncOperation: Yields one database name per database.
        """
        url = self._url(self._get_endpoint_all_dbs())

        async def produce(token: CancellationToken) -> AsyncIterator[str]:
            decoder = DocumentStreamDecoder(item_type=str, logger=self.logging)
            async for document in decoder.decode(await self._download(url)):
                yield document.item

        return self._operation("databases", produce)
