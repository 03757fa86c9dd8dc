from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from types import TracebackType
from typing import Any, AsyncIterator

import httpx
from httpx._types import QueryParamTypes, RequestContent, RequestData

from couchstream.clients.db.models.errors import CouchTransportError
from couchstream.helper.HelperConfig import HelperConfig
from couchstream.models.config import EnvConfig


class ClientInterface(ABC):
    """HTTP plumbing shared by every engine: env settings, one pooled AsyncClient, error mapping."""

    def __init__(self, helper_config: HelperConfig, transport: httpx.AsyncBaseTransport | None = None):
        self._helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.timeout = helper_config.get_number_val(f"{self.get_client_type().upper()}_TIMEOUT", default=30.0)

        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.validate_full_configuration()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_full_configuration(self) -> None:
        """
        Reads every key from ``_get_required_config`` once so that a bad setup fails at construction.

        Raises:
            ValueError: A required key is unset or cannot be parsed.
        """
        for entry in self._get_required_config():
            self.get_config_val(raw_key=entry.env_key, default=entry.default, val_type=entry.val_type)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def get_client_type(self) -> str:
        return self._get_client_type().lower()

    @abstractmethod
    def _get_client_type(self) -> str:
        """
        Returns the family of the client, the first part of its env prefix.

        Returns:
            str: The client type, e.g. "db"
        """
        pass

    def get_engine_name(self) -> str:
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        """
        Returns the engine identifier, the second part of its env prefix.

        Returns:
            str: The engine name, e.g. "couchdb" or "cloudant"
        """
        pass

    ################ CONFIG ##################
    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        """
        Returns the settings the client cannot work without.

        Returns:
            list[EnvConfig]: The keys without their client prefix, with type and default.
        """
        pass

    def _get_config_key_name(self, raw_key: str) -> str:
        """
        Prefixes ``raw_key`` with the client type and engine.

        Returns:
            str: The environment variable name, e.g. "BASE_URL" -> "DB_COUCHDB_BASE_URL"
        """
        return "_".join((self.get_client_type(), self.get_engine_name(), raw_key)).upper()

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """
        Reads a prefixed setting of this client.

        Args:
            raw_key (str): Key without the client prefix, e.g. "BASE_URL".
            default (Any): Value used when the variable is unset.
            val_type (str): One of "string", "number", "bool", "list" or "url".

        Raises:
            ValueError: Unknown ``val_type``, or the value is missing or malformed.
        """
        readers = {
            "string": self._helper_config.get_string_val,
            "number": self._helper_config.get_number_val,
            "bool": self._helper_config.get_bool_val,
            "list": self._helper_config.get_list_val,
            "url": self._helper_config.get_url_val,
        }
        reader = readers.get(val_type)
        if reader is None:
            raise ValueError(f"Config type '{val_type}' of key '{raw_key}' is not supported by the {self.get_engine_name()} client.")
        return reader(self._get_config_key_name(raw_key), default=default)

    ################ AUTH ##################
    @abstractmethod
    def _get_auth_header(self) -> dict:
        """
        Returns the headers that authenticate every request.

        Returns:
            dict: The credential headers, empty when no credentials are configured.
        """
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_base_url(self) -> str:
        """
        Returns the server root all endpoints are resolved against.

        Returns:
            str: The base URL ending with "/", e.g. "http://localhost:5984/"
        """
        pass

    @abstractmethod
    def _get_endpoint_healthcheck(self) -> str:
        """
        Returns the path a live server answers with a 2xx status.

        Returns:
            str: The healthcheck endpoint, e.g. "/"
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_healthcheck(self) -> httpx.Response:
        """
        Sends a GET to the healthcheck endpoint.

        Returns:
            httpx.Response: The 2xx response of the server.

        Raises:
            CouchTransportError: The server is unreachable or answers with a non-2xx status.
        """
        return await self.do_request(method="GET", endpoint=self._get_endpoint_healthcheck())

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self) -> None:
        """
        Opens the pooled AsyncClient. Calling it twice keeps the first one.
        """
        if self._client is None:
            options: dict[str, Any] = {"timeout": self.timeout}
            if self._transport is not None:
                options["transport"] = self._transport
            self._client = httpx.AsyncClient(**options)

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def __aenter__(self) -> "ClientInterface":
        await self.boot()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _build_request_kwargs(
        self,
        content: RequestContent | None,
        data: RequestData | None,
        json: Any,
        params: QueryParamTypes | None,
        endpoint: str,
        url: str | None,
        additional_headers: dict | None,
    ) -> dict:
        if url is None:
            path = endpoint.strip().lstrip("/")
            url = self._get_base_url().rstrip("/") + "/" + path if path else self._get_base_url()

        # content-type comes from httpx for json/data, from the caller for raw content
        kwargs: dict = {
            "url": url,
            "params": params,
            "timeout": self.timeout,
            "headers": {**self._get_auth_header(), **(additional_headers or {})},
        }
        for name, value in (("content", content), ("data", data), ("json", json)):
            if value is not None:
                kwargs[name] = value
                break
        return kwargs

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise CouchTransportError("HTTP client not initialised. Call boot() before making requests.")
        return self._client

    def _raise_on_error(self, method: str, response: httpx.Response, body: str) -> None:
        if response.status_code < 300:
            return
        target = str(response.request.url)
        self.logging.error("%s %s failed with status %d: %s", method, target, response.status_code, body)
        raise CouchTransportError(
            f"{method} {target} failed with status {response.status_code}",
            status_code=response.status_code,
            url=target,
            body=body,
        )

    def _transport_failure(self, method: str, url: Any, error: httpx.TransportError) -> CouchTransportError:
        self.logging.error("%s %s failed: %s", method, url, error)
        return CouchTransportError(f"{method} {url} failed: {error}", url=str(url))

    async def do_request(
        self,
        method: str = "GET",
        content: RequestContent | None = None,
        data: RequestData | None = None,
        json: Any = None,
        params: QueryParamTypes | None = None,
        endpoint: str = "",
        url: str | None = None,
        additional_headers: dict | None = None,
    ) -> httpx.Response:
        """Send one request and read its body.

        At most one of ``content`` (raw bytes or text), ``data`` (form fields)
        and ``json`` is sent; the first one given wins. ``url`` replaces
        base URL plus ``endpoint``. ``additional_headers`` override the
        auth header.

        Returns:
            httpx.Response: A response with a 2xx status.

        Raises:
            CouchTransportError: No booted client, a network failure, or a status of 300 and above.
        """
        client = self._get_http_client()
        kwargs = self._build_request_kwargs(content, data, json, params, endpoint, url, additional_headers)
        try:
            response = await client.request(method, **kwargs)
        except httpx.TransportError as e:
            raise self._transport_failure(method, kwargs["url"], e) from e

        self._raise_on_error(method, response, response.text)
        return response

    @asynccontextmanager
    async def do_stream(
        self,
        method: str = "GET",
        content: RequestContent | None = None,
        json: Any = None,
        params: QueryParamTypes | None = None,
        endpoint: str = "",
        url: str | None = None,
        additional_headers: dict | None = None,
        timeout: httpx.Timeout | float | None = None,
    ) -> AsyncIterator[httpx.Response]:
        """Like :meth:`do_request`, but yield the response with its body unread.

        Meant for change feeds, attachments and large row sets. The
        connection goes back to the pool when the block exits. ``timeout``
        replaces the client timeout for this request only.

        Raises:
            CouchTransportError: No booted client, a network failure, or a status of 300 and above
                (the error body is read before raising).
        """
        client = self._get_http_client()
        kwargs = self._build_request_kwargs(content, None, json, params, endpoint, url, additional_headers)
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            async with client.stream(method, **kwargs) as response:
                if response.status_code >= 300:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    self._raise_on_error(method, response, body)
                yield response
        except httpx.TransportError as e:
            raise self._transport_failure(method, kwargs["url"], e) from e
