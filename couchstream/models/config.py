from pydantic import BaseModel


class EnvConfig(BaseModel):
    """
    A single environment setting a client needs before it can talk to its server.

    Attributes:
        env_key (str): The raw key name; the client prefixes it with its type and engine (e.g. "BASE_URL" -> "DB_COUCHDB_BASE_URL").
        val_type (str): The expected value type. Supported types are "string", "number", "bool", "list" and "url".
        default (str | int | bool | list | None): Value used when the variable is not set. None marks the setting as required.
    """

    env_key: str
    val_type: str
    default: str | int | bool | list | None = None
