"""MongoDB adapter built on the pymongo async client.

Collections are presented as tables. MongoDB is schemaless, so columns are
inferred from a sampled document and ``_id`` is always the primary key.
"""

import datetime as dt
import re
from typing import Any, Dict, List, Optional, Sequence

from bson import ObjectId
from pymongo import AsyncMongoClient
from pymongo.errors import ConnectionFailure, OperationFailure, PyMongoError

from ...core.exceptions import AuthenticationError, ConnectionError, ErrorCodes, ValidationError
from ..base import BaseAdapter
from ..models import (
    ColumnDefinition,
    ColumnDetail,
    ColumnInfo,
    ForeignKeyDefinition,
    ForeignKeyInfo,
    IndexDefinition,
    IndexInfo,
    PrimaryKey,
    TableData,
    TableInfo,
    TableOptions,
)

ID_FIELD = "_id"
INIT_COLLECTION = "_init_"
AUTH_FAILED_CODE = 18
_OBJECT_ID = re.compile(r"^[0-9a-fA-F]{24}$")


def coerce_id(value: Any) -> Any:
    """Turn 24-hex strings into ``ObjectId``; other values pass through."""
    if isinstance(value, str) and _OBJECT_ID.match(value):
        return ObjectId(value)
    return value


def bson_type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "double"
    if isinstance(value, str):
        return "string"
    if isinstance(value, ObjectId):
        return "objectId"
    if isinstance(value, (dt.datetime, dt.date)):
        return "date"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, (list, tuple)):
        return "array"
    return type(value).__name__


class MongoDBAdapter(BaseAdapter):
    """MongoDB adapter.

    Free-form queries are not supported; documents are browsed and edited
    through the table operations.
    """

    engine = "mongodb"
    component_name = "MongoDBAdapter"

    def __init__(self, config, settings=None) -> None:
        super().__init__(config, settings)
        self._client: Optional[AsyncMongoClient] = None
        self._server_version: Optional[str] = None

    async def _async_initialize(self) -> None:
        context = {"host": self.config.resolved_host, "port": self.config.resolved_port}
        password = self.config.password.get_secret_value()
        credentials: Dict[str, Any] = {}
        if self.config.username:
            credentials = {
                "username": self.config.username,
                "password": password,
                "authSource": self.config.options.get("auth_source", "admin"),
            }

        self._client = AsyncMongoClient(
            self.config.resolved_host,
            self.config.resolved_port,
            serverSelectionTimeoutMS=self.config.connect_timeout * 1000,
            connectTimeoutMS=self.config.connect_timeout * 1000,
            **credentials,
        )
        try:
            await self._client.admin.command("ping")
            info = await self._client.server_info()
            self._server_version = info.get("version")
        except OperationFailure as e:
            await self._close_client()
            if e.code == AUTH_FAILED_CODE:
                raise AuthenticationError(
                    f"MongoDB authentication failed: {e}",
                    code=ErrorCodes.AUTH_FAILED,
                    context=context,
                    cause=e,
                ) from e
            raise ConnectionError(
                f"Cannot connect to MongoDB: {e}",
                code=ErrorCodes.CONNECTION_REFUSED,
                context=context,
                cause=e,
            ) from e
        except ConnectionFailure as e:
            await self._close_client()
            raise ConnectionError(
                f"Cannot connect to MongoDB: {e}",
                code=ErrorCodes.CONNECTION_TIMEOUT,
                context=context,
                cause=e,
            ) from e

        self.logger.info("MongoDB client connected", server_version=self._server_version, **context)

    async def _close_client(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await client.close()

    async def _async_cleanup(self) -> None:
        await self._close_client()
        self.logger.info("MongoDB client closed")

    def is_transport_error(self, exc: BaseException) -> bool:
        if isinstance(exc, ConnectionFailure):
            return True
        return super().is_transport_error(exc)

    async def is_alive(self) -> bool:
        if not self.is_initialized or self._client is None:
            return False
        try:
            await self._client.admin.command("ping")
        except PyMongoError as e:
            self.logger.debug("Liveness probe failed", error=str(e))
            return False
        return True

    def _collection(self, database: str, table: str):
        return self._client[database][table]

    # Introspection

    async def list_databases(self) -> List[str]:
        self._require_connected()
        with self._translate_errors("list_databases", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            return sorted(await self._client.list_database_names())

    async def list_tables(self, database: str) -> List[TableInfo]:
        self._require_connected()
        db = self._client[database]
        tables = []
        with self._translate_errors("list_tables", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            cursor = await db.list_collections()
            async for info in cursor:
                name = info["name"]
                if info.get("type") == "view":
                    tables.append(TableInfo(name=name, rows=0, is_view=True))
                    continue
                count = await db[name].estimated_document_count()
                tables.append(TableInfo(name=name, rows=int(count), is_view=False))
        return sorted(tables, key=lambda t: (t.is_view, t.name))

    async def list_columns_detailed(self, database: str, table: str) -> List[ColumnDetail]:
        self._require_connected()
        with self._translate_errors("list_columns_detailed", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            document = await self._collection(database, table).find_one()
        if not document:
            return []
        return [
            ColumnDetail(
                name=name,
                type=bson_type_name(document[name]),
                nullable=name != ID_FIELD,
                key="PRI" if name == ID_FIELD else None,
            )
            for name in self._ordered_keys([document])
        ]

    async def list_indexes(self, database: str, table: str) -> List[IndexInfo]:
        self._require_connected()
        with self._translate_errors("list_indexes", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            information = await self._collection(database, table).index_information()

        indexes = []
        for name, spec in information.items():
            keys = spec.get("key", [])
            text = any(direction == "text" for _, direction in keys)
            indexes.append(IndexInfo(
                name=name,
                columns=[field for field, _ in keys],
                kind="fulltext" if text else ("unique" if spec.get("unique") or name == "_id_" else "normal"),
                primary=name == "_id_",
            ))
        return indexes

    async def list_foreign_keys(self, database: str, table: str) -> List[ForeignKeyInfo]:
        return []

    async def get_table_options(self, database: str, table: str) -> TableOptions:
        return TableOptions(engine="mongodb")

    @staticmethod
    def _ordered_keys(documents: Sequence[Dict[str, Any]]) -> List[str]:
        keys: Dict[str, None] = {ID_FIELD: None} if any(ID_FIELD in d for d in documents) else {}
        for document in documents:
            for key in document:
                keys.setdefault(key, None)
        return list(keys)

    async def get_table_data(self, database: str, table: str, page: int = 1, page_size: int = 100) -> TableData:
        self._validate_page(page, page_size)
        self._require_connected()

        collection = self._collection(database, table)
        with self._translate_errors("get_table_data"):
            with self.perf_logger.measure("get_table_data", database=database, table=table):
                total = await collection.count_documents({})
                cursor = collection.find().skip((page - 1) * page_size).limit(page_size)
                documents = await cursor.to_list()

        names = self._ordered_keys(documents)
        columns = []
        for name in names:
            sample = next((d[name] for d in documents if d.get(name) is not None), None)
            columns.append(ColumnInfo(
                name=name,
                type=bson_type_name(sample),
                nullable=name != ID_FIELD,
                key="PRI" if name == ID_FIELD else None,
            ))
        rows = [[document.get(name) for name in names] for document in documents]
        return TableData(columns=columns, rows=rows, total=total, page=page, page_size=page_size)

    # Documents

    @staticmethod
    def _filter(primary_key: PrimaryKey) -> Dict[str, Any]:
        value = coerce_id(primary_key.value) if primary_key.column == ID_FIELD else primary_key.value
        return {primary_key.column: value}

    async def insert_row(self, database: str, table: str, values: Dict[str, Any]) -> int:
        self._require_connected()
        document = dict(values)
        if document.get(ID_FIELD) in (None, ""):
            document.pop(ID_FIELD, None)
        else:
            document[ID_FIELD] = coerce_id(document[ID_FIELD])
        with self._translate_errors("insert_row"):
            await self._collection(database, table).insert_one(document)
        return 1

    async def update_row(
        self, database: str, table: str, primary_key: PrimaryKey, updates: Dict[str, Any]
    ) -> int:
        self._require_connected()
        changes = {k: v for k, v in updates.items() if k != ID_FIELD}
        if not changes:
            raise ValidationError("No fields to update", context={"table": table})
        with self._translate_errors("update_row"):
            result = await self._collection(database, table).update_one(
                self._filter(primary_key), {"$set": changes}
            )
        return result.matched_count

    async def delete_row(self, database: str, table: str, primary_key: PrimaryKey) -> int:
        self._require_connected()
        with self._translate_errors("delete_row"):
            result = await self._collection(database, table).delete_one(self._filter(primary_key))
        return result.deleted_count

    # Databases and collections

    def _ddl_errors(self, operation: str):
        self._require_connected()
        return self._translate_errors(operation, code=ErrorCodes.DDL_FAILED)

    async def create_database(self, name: str, charset: Optional[str] = None, collation: Optional[str] = None) -> None:
        # A database only exists once it holds a collection
        with self._ddl_errors("create_database"):
            db = self._client[name]
            await db.create_collection(INIT_COLLECTION)
            await db.drop_collection(INIT_COLLECTION)
        self.logger.info("Database created", database=name)

    async def drop_database(self, name: str) -> None:
        with self._ddl_errors("drop_database"):
            await self._client.drop_database(name)
        self.logger.info("Database dropped", database=name)

    async def create_table(
        self,
        database: str,
        table: str,
        columns: Sequence[ColumnDefinition],
        indexes: Sequence[IndexDefinition] = (),
        foreign_keys: Sequence[ForeignKeyDefinition] = (),
        options: Optional[TableOptions] = None,
    ) -> None:
        with self._ddl_errors("create_table"):
            await self._client[database].create_collection(table)
        self.logger.info("Collection created", database=database, collection=table)

    async def drop_table(self, database: str, table: str) -> None:
        with self._ddl_errors("drop_table"):
            await self._client[database].drop_collection(table)
        self.logger.info("Collection dropped", database=database, collection=table)

    async def truncate_table(self, database: str, table: str) -> None:
        with self._ddl_errors("truncate_table"):
            result = await self._collection(database, table).delete_many({})
        self.logger.info("Collection truncated", database=database, collection=table, deleted=result.deleted_count)

    async def rename_table(self, database: str, table: str, new_name: str) -> None:
        with self._ddl_errors("rename_table"):
            await self._collection(database, table).rename(new_name)
        self.logger.info("Collection renamed", database=database, collection=table, new_name=new_name)

    async def duplicate_table(self, database: str, source: str, target: str, with_data: bool = False) -> None:
        with self._ddl_errors("duplicate_table"):
            if with_data:
                cursor = await self._collection(database, source).aggregate(
                    [{"$match": {}}, {"$out": target}]
                )
                await cursor.to_list()
            else:
                await self._client[database].create_collection(target)
        self.logger.info(
            "Collection duplicated", database=database, source=source, target=target, with_data=with_data
        )

    def get_connection_info(self) -> Dict[str, Any]:
        info = super().get_connection_info()
        info["server_version"] = self._server_version
        return info
