"""Tests for the Cloudant admin operations."""

from urllib.parse import parse_qs

import pytest

from couchstream.clients.db.cloudant.DBClientCloudant import DBClientCloudant
from couchstream.clients.db.models.errors import CouchConversionError, CouchValidationError


class TestCloudant:
    def test_account_is_the_first_host_label(self, cloudant_client):
        """The account name is read from the base URL."""
        assert cloudant_client.get_account() == "acme"
        assert cloudant_client.get_engine_name() == "cloudant"

    @pytest.mark.asyncio
    async def test_create_api_key(self, cloudant_client, handler):
        """A generated key is returned as username and password."""
        handler.on("POST", "/_api/v2/api_keys", status_code=201, json_body={"ok": True, "key": "thandoftenter", "password": "s3cr3t"})
        async with cloudant_client:
            api_key = await cloudant_client.create_api_key().first()
        assert api_key.username == "thandoftenter"
        assert api_key.password == "s3cr3t"
        assert handler.requests[0].url.host == "cloudant.com"

    @pytest.mark.asyncio
    async def test_create_api_key_without_key(self, cloudant_client, handler):
        """A response without key is a conversion error."""
        handler.on("POST", "/_api/v2/api_keys", json_body={"ok": False})
        async with cloudant_client:
            with pytest.raises(CouchConversionError):
                await cloudant_client.create_api_key().first()

    @pytest.mark.asyncio
    async def test_set_permissions_posts_a_form(self, cloudant_client, handler):
        """Roles are posted as repeated form fields for account/database."""
        handler.on("POST", "/api/set_permissions", json_body={"ok": True})
        async with cloudant_client:
            response = await cloudant_client.set_permissions("mydb", "thandoftenter", reader=True, writer=True).first()

        assert response == {"ok": True}
        request = handler.requests[0]
        assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
        form = parse_qs(request.content.decode("utf-8"))
        assert form == {"database": ["acme/mydb"], "username": ["thandoftenter"], "roles": ["_reader", "_writer"]}

    def test_set_permissions_needs_username(self, cloudant_client):
        """A blank username is rejected."""
        with pytest.raises(CouchValidationError):
            cloudant_client.set_permissions("mydb", "")

    def test_admin_url_is_configurable(self, helper_config, env):
        """DB_CLOUDANT_ADMIN_URL replaces the default admin host."""
        env.setenv("DB_CLOUDANT_ADMIN_URL", "http://admin.test")
        client = DBClientCloudant(helper_config=helper_config)
        assert client._get_endpoint_api_keys() == "http://admin.test/_api/v2/api_keys"
