from pydantic import BaseModel


class ApiKey(BaseModel):
    """
    A generated API key (Cloudant admin API). Use it as username/password of a new client.
    """

    username: str
    password: str
