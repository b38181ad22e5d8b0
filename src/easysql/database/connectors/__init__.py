"""Engine adapters.

Each module imports its own driver, so adapters are loaded on demand by the
``AdapterRegistry`` rather than imported here.

Modules:
    mysql: MySQL and MariaDB (aiomysql)
    postgresql: PostgreSQL (asyncpg)
    sqlite: SQLite (aiosqlite)
    mssql: SQL Server (aioodbc)
    mongodb: MongoDB (pymongo async client)
    redis: Redis (redis.asyncio)
"""
