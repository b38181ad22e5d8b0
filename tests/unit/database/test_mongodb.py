"""Tests for the MongoDB adapter with a mocked client."""

import datetime as dt
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bson import ObjectId
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError

from easysql.config.models import ConnectionProfile
from easysql.core.exceptions import AuthenticationError, ConnectionError, ValidationError
from easysql.database.connectors.mongodb import MongoDBAdapter, bson_type_name, coerce_id
from easysql.database.models import PrimaryKey

OID = "65a1b2c3d4e5f60718293a4b"


@pytest.fixture
def profile():
    return ConnectionProfile(id="mongo", type="mongodb", host="mongo.internal", username="app", password="pw")


@pytest.fixture
def collection():
    collection = MagicMock()
    collection.count_documents = AsyncMock()
    collection.insert_one = AsyncMock()
    collection.update_one = AsyncMock()
    collection.delete_one = AsyncMock()
    collection.index_information = AsyncMock()
    return collection


@pytest.fixture
def adapter(profile, collection):
    adapter = MongoDBAdapter(profile)
    adapter._initialized = True
    adapter._collection = MagicMock(return_value=collection)
    return adapter


def test_coerce_id():
    assert coerce_id(OID) == ObjectId(OID)
    assert coerce_id("user-1") == "user-1"
    assert coerce_id(42) == 42


@pytest.mark.parametrize("value,expected", [
    (None, "null"),
    (True, "bool"),
    (3, "int"),
    (1.5, "double"),
    ("x", "string"),
    (ObjectId(OID), "objectId"),
    (dt.datetime(2024, 1, 1), "date"),
    ({"a": 1}, "object"),
    ([1], "array"),
])
def test_bson_type_name(value, expected):
    assert bson_type_name(value) == expected


class TestConnect:
    """Test connection error mapping."""

    @pytest.mark.asyncio
    async def test_authentication_failure(self, profile):
        client = MagicMock()
        client.admin.command = AsyncMock(side_effect=OperationFailure("Authentication failed.", code=18))
        client.close = AsyncMock()

        with patch("easysql.database.connectors.mongodb.AsyncMongoClient", return_value=client):
            with pytest.raises(AuthenticationError):
                await MongoDBAdapter(profile).connect()

        client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_server_unreachable(self, profile):
        client = MagicMock()
        client.admin.command = AsyncMock(side_effect=ServerSelectionTimeoutError("No servers found"))
        client.close = AsyncMock()

        with patch("easysql.database.connectors.mongodb.AsyncMongoClient", return_value=client) as factory:
            with pytest.raises(ConnectionError) as exc_info:
                await MongoDBAdapter(profile).connect()

        assert exc_info.value.code == "CONNECTION_TIMEOUT"
        assert factory.call_args.kwargs["authSource"] == "admin"
        assert factory.call_args.args == ("mongo.internal", 27017)

    def test_selection_timeout_is_transport_error(self, profile):
        assert MongoDBAdapter(profile).is_transport_error(ServerSelectionTimeoutError("gone"))
        assert not MongoDBAdapter(profile).is_transport_error(OperationFailure("bad"))


class TestDocuments:
    """Test document browsing and editing."""

    @pytest.mark.asyncio
    async def test_table_data_uses_union_of_keys(self, adapter, collection):
        documents = [
            {"_id": ObjectId(OID), "name": "ada"},
            {"_id": 2, "email": "bob@example.com", "age": 30},
        ]
        collection.count_documents.return_value = 12
        cursor = MagicMock()
        cursor.skip.return_value = cursor
        cursor.limit.return_value = cursor
        cursor.to_list = AsyncMock(return_value=documents)
        collection.find.return_value = cursor

        data = await adapter.get_table_data("app", "users", page=2, page_size=10)

        cursor.skip.assert_called_once_with(10)
        cursor.limit.assert_called_once_with(10)
        assert [c.name for c in data.columns] == ["_id", "name", "email", "age"]
        assert data.columns[0].is_primary_key
        assert data.columns[3].type == "int"
        assert data.rows == [[OID, "ada", None, None], [2, None, "bob@example.com", 30]]
        assert data.total == 12

    @pytest.mark.asyncio
    async def test_insert_drops_blank_id(self, adapter, collection):
        await adapter.insert_row("app", "users", {"_id": "", "name": "ada"})

        collection.insert_one.assert_awaited_once_with({"name": "ada"})

    @pytest.mark.asyncio
    async def test_update_coerces_object_id(self, adapter, collection):
        collection.update_one.return_value = MagicMock(matched_count=1)

        affected = await adapter.update_row("app", "users", PrimaryKey("_id", OID), {"_id": OID, "age": 31})

        assert affected == 1
        collection.update_one.assert_awaited_once_with({"_id": ObjectId(OID)}, {"$set": {"age": 31}})

    @pytest.mark.asyncio
    async def test_update_requires_fields(self, adapter):
        with pytest.raises(ValidationError):
            await adapter.update_row("app", "users", PrimaryKey("_id", OID), {"_id": OID})

    @pytest.mark.asyncio
    async def test_delete(self, adapter, collection):
        collection.delete_one.return_value = MagicMock(deleted_count=0)

        assert await adapter.delete_row("app", "users", PrimaryKey("_id", 7)) == 0
        collection.delete_one.assert_awaited_once_with({"_id": 7})

    @pytest.mark.asyncio
    async def test_list_indexes(self, adapter, collection):
        collection.index_information.return_value = {
            "_id_": {"key": [("_id", 1)]},
            "email_1": {"key": [("email", 1)], "unique": True},
            "bio_text": {"key": [("bio", "text")]},
        }

        indexes = await adapter.list_indexes("app", "users")

        assert [(i.name, i.kind, i.primary) for i in indexes] == [
            ("_id_", "unique", True),
            ("email_1", "unique", False),
            ("bio_text", "fulltext", False),
        ]

    @pytest.mark.asyncio
    async def test_schema_less_extras(self, adapter):
        assert await adapter.list_foreign_keys("app", "users") == []
        assert (await adapter.get_table_options("app", "users")).engine == "mongodb"
