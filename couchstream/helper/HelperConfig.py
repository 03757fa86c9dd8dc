"""Environment configuration helper for couchstream clients and runners."""

import logging
import os
from typing import Any, Callable

import httpx


class HelperConfig:
    """Typed access to environment variables plus the shared logger.

    Keys are upper-cased before lookup. An unset or empty variable resolves to
    ``default``; without a default it is an error.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _lookup(self, key: str, default: Any, parse: Callable[[str, str], Any]) -> Any:
        name = key.upper()
        raw = (os.getenv(name) or "").strip()
        if raw:
            return parse(name, raw)
        if default is None:
            raise ValueError(f"Environment variable '{name}' is not set.")
        return default

    def get_string_val(self, key: str, default: str | None = None) -> str:
        """Read a string value, stripped of surrounding whitespace."""
        return self._lookup(key, default, lambda name, raw: raw)

    def get_number_val(self, key: str, default: float | int | None = None) -> float | int:
        """Read a number. Values with a "." become floats, the rest ints.

        Raises:
            ValueError: If the variable is missing without default, or is not numeric.
        """
        def parse(name: str, raw: str) -> float | int:
            try:
                return float(raw) if "." in raw else int(raw)
            except ValueError:
                raise ValueError(f"Environment variable '{name}' is not a valid number: '{raw}'.") from None

        return self._lookup(key, default, parse)

    def get_bool_val(self, key: str, default: bool | None = None) -> bool:
        """Read a flag. "true", "1" and "yes" (any case) are true, anything else false."""
        return self._lookup(key, default, lambda name, raw: raw.lower() in ("true", "1", "yes"))

    def get_list_val(self, key: str, default: list | None = None, separator: str = ",", element_type: type = str) -> list:
        """Read a bracketed list such as ``[couchdb, cloudant]``.

        Args:
            key (str): Environment variable name.
            default (list | None): Value used when the variable is unset.
            separator (str): Element delimiter inside the brackets.
            element_type (type): Callable applied to every element.

        Returns:
            list: The elements, blanks dropped.

        Raises:
            ValueError: If the value is missing without default, is not
                bracketed, or an element cannot be converted.
        """
        def parse(name: str, raw: str) -> list:
            if not (raw.startswith("[") and raw.endswith("]")):
                raise ValueError(f"Environment variable '{name}' must look like '[a{separator}b{separator}...]'. Got: '{raw}'")
            items = [item.strip() for item in raw[1:-1].split(separator)]
            try:
                return [element_type(item) for item in items if item]
            except ValueError as e:
                raise ValueError(f"Environment variable '{name}' has an element that is not {element_type.__name__}: {e}") from e

        return self._lookup(key, default, parse)

    def get_url_val(self, key: str, default: str | None = None) -> str:
        """Read an absolute http(s) URL, returned with a trailing "/".

        Raises:
            ValueError: If the value is missing without default or is not an absolute http(s) URL.
        """
        raw = self.get_string_val(key, default=default)
        name = key.upper()
        try:
            url = httpx.URL(raw)
        except httpx.InvalidURL as e:
            raise ValueError(f"Environment variable '{name}' is not a valid URL: '{raw}'.") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"Environment variable '{name}' must be an absolute http(s) URL. Got: '{raw}'")
        return raw.rstrip("/") + "/"

    def get_logger(self) -> logging.Logger:
        return self._logger
