"""Redis adapter built on redis.asyncio.

Logical databases are listed as ``db0`` .. ``dbN``. Keys are grouped into
tables by the part before the first delimiter, so ``user:1`` and ``user:2``
both belong to table ``user``.
"""

import asyncio
import dataclasses
import json
import re
import shlex
from typing import Any, Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import AuthenticationError as RedisAuthenticationError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ...core.exceptions import AuthenticationError, ConnectionError, ErrorCodes, ValidationError
from ...core.utils import measure_time
from ..base import BaseAdapter
from ..models import (
    ColumnDetail,
    ForeignKeyInfo,
    IndexInfo,
    PrimaryKey,
    QueryResult,
    TableData,
    TableInfo,
    TableOptions,
)

KEY_COLUMNS = (
    ColumnDetail(name="key", type="string", nullable=False, key="PRI"),
    ColumnDetail(name="value", type="string"),
    ColumnDetail(name="type", type="string"),
    ColumnDetail(name="ttl", type="integer"),
)
NO_EXPIRY = "forever"
_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def parse_database_index(database: Optional[str]) -> int:
    """Map ``"db3"`` or ``"3"`` to ``3``; empty means database 0."""
    if not database:
        return 0
    text = database[2:] if database.lower().startswith("db") else database
    try:
        index = int(text)
    except ValueError:
        raise ValidationError(
            f"Invalid Redis database name: {database}", context={"database": database}
        ) from None
    if index < 0:
        raise ValidationError(f"Invalid Redis database name: {database}", context={"database": database})
    return index


def prefix_pattern(prefix: str) -> str:
    """Glob pattern matching every key starting with ``prefix``."""
    if prefix == "*":
        return "*"
    return _GLOB_SPECIAL.sub(r"\\\1", prefix) + "*"


class RedisAdapter(BaseAdapter):
    """Redis adapter.

    One client is kept per logical database; clients are created lazily and
    share the profile's address and credentials.
    """

    engine = "redis"
    component_name = "RedisAdapter"

    def __init__(self, config, settings=None) -> None:
        super().__init__(config, settings)
        self.redis_settings = self.settings.redis
        self.default_index = parse_database_index(config.database)
        self._clients: Dict[int, aioredis.Redis] = {}
        self._server_version: Optional[str] = None

    def _new_client(self, index: int) -> aioredis.Redis:
        password = self.config.password.get_secret_value()
        return aioredis.Redis(
            host=self.config.resolved_host,
            port=self.config.resolved_port,
            db=index,
            username=self.config.username or None,
            password=password or None,
            socket_connect_timeout=self.config.connect_timeout,
            decode_responses=True,
        )

    def _client(self, database: Optional[str] = None) -> aioredis.Redis:
        index = self.default_index if database is None else parse_database_index(database)
        client = self._clients.get(index)
        if client is None:
            client = self._clients[index] = self._new_client(index)
        return client

    async def _async_initialize(self) -> None:
        context = {"host": self.config.resolved_host, "port": self.config.resolved_port}
        client = self._client()
        try:
            await client.ping()
            info = await client.info("server")
            self._server_version = info.get("redis_version")
        except RedisAuthenticationError as e:
            await self._close_clients()
            raise AuthenticationError(
                f"Redis authentication failed: {e}",
                code=ErrorCodes.AUTH_FAILED,
                context=context,
                cause=e,
            ) from e
        except RedisError as e:
            await self._close_clients()
            raise ConnectionError(
                f"Cannot connect to Redis: {e}",
                code=ErrorCodes.CONNECTION_REFUSED,
                context=context,
                cause=e,
            ) from e
        self.logger.info("Redis client connected", server_version=self._server_version, **context)

    async def _close_clients(self) -> None:
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            try:
                await client.aclose()
            except RedisError as e:
                self.logger.warning("Failed to close Redis client", error=str(e))

    async def _async_cleanup(self) -> None:
        await self._close_clients()
        self.logger.info("Redis clients closed")

    def is_transport_error(self, exc: BaseException) -> bool:
        if isinstance(exc, (RedisConnectionError, RedisTimeoutError)):
            return not isinstance(exc, RedisAuthenticationError)
        return super().is_transport_error(exc)

    async def is_alive(self) -> bool:
        if not self.is_initialized:
            return False
        try:
            await self._client().ping()
        except RedisError as e:
            self.logger.debug("Liveness probe failed", error=str(e))
            return False
        return True

    # Commands

    @staticmethod
    def _result_rows(result: Any) -> List[List[Any]]:
        if isinstance(result, dict):
            rows: List[List[Any]] = []
            for key, value in result.items():
                rows.extend([[key], [value]])
            return rows
        if isinstance(result, (list, tuple, set)):
            return [[item] for item in result]
        return [[result]]

    async def query(self, statement: str) -> QueryResult:
        """Execute one Redis command written as in ``redis-cli``."""
        self._require_connected()
        try:
            parts = shlex.split(statement)
        except ValueError as e:
            raise ValidationError(f"Cannot parse command: {e}", context={"statement": statement}) from e
        if not parts:
            raise ValidationError("Empty command", context={"statement": statement})

        with measure_time() as timer, self._translate_errors("query", statement=statement):
            with self.perf_logger.measure("query", command=parts[0].upper()):
                result = await self._client().execute_command(*parts)
        return QueryResult(
            columns=["result"],
            rows=self._result_rows(result),
            execution_time=timer.duration,
        )

    # Introspection

    async def list_databases(self) -> List[str]:
        self._require_connected()
        with self._translate_errors("list_databases", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            try:
                config = await self._client().config_get("databases")
            except ResponseError as e:
                # CONFIG is commonly disabled on managed servers
                self.logger.debug("CONFIG GET databases denied", error=str(e))
                config = {}
        count = int(config.get("databases") or self.redis_settings.default_database_count)
        return [f"db{index}" for index in range(count)]

    async def list_tables(self, database: str) -> List[TableInfo]:
        """List key prefixes seen in a SCAN sample.

        Row counts are the number of sampled keys per prefix, not totals.
        """
        self._require_connected()
        client = self._client(database)
        delimiter = self.redis_settings.key_delimiter
        limit = self.redis_settings.prefix_sample_limit
        counts: Dict[str, int] = {}
        with self._translate_errors("list_tables", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            async for key in client.scan_iter(count=self.redis_settings.scan_count):
                prefix = key.split(delimiter, 1)[0]
                if prefix not in counts and len(counts) >= limit:
                    break
                counts[prefix] = counts.get(prefix, 0) + 1
        return [TableInfo(name=name, rows=counts[name]) for name in sorted(counts)]

    async def list_columns_detailed(self, database: str, table: str) -> List[ColumnDetail]:
        return [dataclasses.replace(column) for column in KEY_COLUMNS]

    async def list_indexes(self, database: str, table: str) -> List[IndexInfo]:
        return []

    async def list_foreign_keys(self, database: str, table: str) -> List[ForeignKeyInfo]:
        return []

    async def get_table_options(self, database: str, table: str) -> TableOptions:
        return TableOptions(engine="redis")

    async def _preview(self, client: aioredis.Redis, key: str) -> List[Any]:
        size = self.redis_settings.preview_size
        key_type = await client.type(key)
        if key_type == "string":
            value: Any = await client.get(key)
        elif key_type == "list":
            value = json.dumps(await client.lrange(key, 0, size - 1))
        elif key_type == "set":
            value = json.dumps(sorted(await client.smembers(key))[:size])
        elif key_type == "hash":
            items = list((await client.hgetall(key)).items())[:size]
            value = json.dumps(dict(items))
        elif key_type == "zset":
            value = json.dumps([list(pair) for pair in await client.zrange(key, 0, size - 1, withscores=True)])
        else:
            value = f"<{key_type}>"
        ttl = await client.ttl(key)
        return [key, value, key_type, NO_EXPIRY if ttl == -1 else (None if ttl == -2 else ttl)]

    async def get_table_data(self, database: str, table: str, page: int = 1, page_size: int = 100) -> TableData:
        self._validate_page(page, page_size)
        self._require_connected()

        client = self._client(database)
        offset = (page - 1) * page_size
        with self._translate_errors("get_table_data"):
            with self.perf_logger.measure("get_table_data", database=database, table=table):
                keys = sorted(await client.keys(prefix_pattern(table)))
                rows = await asyncio.gather(
                    *(self._preview(client, key) for key in keys[offset:offset + page_size])
                )
        return TableData(
            columns=[column.summary() for column in KEY_COLUMNS],
            rows=list(rows),
            total=len(keys),
            page=page,
            page_size=page_size,
        )

    # Keys

    @staticmethod
    def _ttl(value: Any) -> Optional[int]:
        if value in (None, "", NO_EXPIRY, -1, "-1"):
            return None
        try:
            ttl = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid TTL: {value}", context={"ttl": value}) from None
        if ttl <= 0:
            raise ValidationError(f"TTL must be positive, got {ttl}", context={"ttl": ttl})
        return ttl

    async def insert_row(self, database: str, table: str, values: Dict[str, Any]) -> int:
        """SET a string key; ``key`` is required, ``value`` and ``ttl`` optional."""
        self._require_connected()
        key = values.get("key")
        if not key:
            raise ValidationError("Redis rows need a key", context={"table": table})
        ttl = self._ttl(values.get("ttl"))
        with self._translate_errors("insert_row"):
            await self._client(database).set(str(key), str(values.get("value", "")), ex=ttl)
        return 1

    async def update_row(
        self, database: str, table: str, primary_key: PrimaryKey, updates: Dict[str, Any]
    ) -> int:
        self._require_connected()
        if "value" not in updates and "ttl" not in updates:
            raise ValidationError("Only value and ttl can be updated", context={"fields": list(updates)})

        client = self._client(database)
        key = str(primary_key.value)
        with self._translate_errors("update_row"):
            if not await client.exists(key):
                return 0
            if "value" in updates:
                key_type = await client.type(key)
                if key_type != "string":
                    raise ValidationError(
                        f"Cannot set a value on a {key_type} key", context={"key": key, "type": key_type}
                    )
                await client.set(key, str(updates["value"]), keepttl=True)
            if "ttl" in updates:
                ttl = self._ttl(updates["ttl"])
                if ttl is None:
                    await client.persist(key)
                else:
                    await client.expire(key, ttl)
        return 1

    async def delete_row(self, database: str, table: str, primary_key: PrimaryKey) -> int:
        self._require_connected()
        with self._translate_errors("delete_row"):
            return await self._client(database).delete(str(primary_key.value))

    async def truncate_table(self, database: str, table: str) -> None:
        """Delete every key under the prefix."""
        self._require_connected()
        client = self._client(database)
        deleted = 0
        batch: List[str] = []
        with self._translate_errors("truncate_table", code=ErrorCodes.DDL_FAILED):
            async for key in client.scan_iter(match=prefix_pattern(table), count=self.redis_settings.scan_count):
                batch.append(key)
                if len(batch) >= self.redis_settings.scan_count:
                    deleted += await client.delete(*batch)
                    batch = []
            if batch:
                deleted += await client.delete(*batch)
        self.logger.info("Prefix truncated", database=database, prefix=table, deleted=deleted)

    def get_connection_info(self) -> Dict[str, Any]:
        info = super().get_connection_info()
        info["server_version"] = self._server_version
        return info
