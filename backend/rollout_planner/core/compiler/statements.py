"""
Statement Generator - CREATE DATABASE text per engine.

Pure functions: the caller resolves the final database name (case
folding included) and the admin username before calling.
"""

import json

from rollout_planner.core.errors import InvalidInputError
from rollout_planner.core.models import Engine
from rollout_planner.core.schemas import CreateDatabaseConfig

MYSQL_FAMILY = frozenset({Engine.MYSQL, Engine.TIDB, Engine.MARIADB, Engine.OCEANBASE})

# Engines without database-level character set or collation.
_NO_CHARSET_ENGINES = {
    Engine.SPANNER: "Spanner",
    Engine.CLICKHOUSE: "ClickHouse",
    Engine.SNOWFLAKE: "Snowflake",
}

_OWNER_ENGINES = {
    Engine.POSTGRES: "PostgreSQL",
    Engine.REDSHIFT: "Redshift",
}

_UNCHECKED_ENGINES = frozenset({Engine.SQLITE, Engine.MONGODB, Engine.MSSQL})


def _quote(value: str) -> str:
    """Double-quoted literal with backslash escapes."""
    return json.dumps(value, ensure_ascii=False)


def check_character_set_collation_owner(
    engine: Engine,
    character_set: str,
    collation: str,
    owner: str,
) -> None:
    """Raise InvalidInputError when the options don't fit the engine."""
    if engine in _NO_CHARSET_ENGINES:
        label = _NO_CHARSET_ENGINES[engine]
        if character_set:
            raise InvalidInputError(
                f"{label} does not support character set, but got {character_set}"
            )
        if collation:
            raise InvalidInputError(
                f"{label} does not support collation, but got {collation}"
            )
        return

    if engine in _OWNER_ENGINES:
        if not owner:
            raise InvalidInputError(f"database owner is required for {_OWNER_ENGINES[engine]}")
        return

    if engine in _UNCHECKED_ENGINES:
        return

    if not character_set:
        raise InvalidInputError(f"character set missing for {engine.value}")
    if not collation:
        raise InvalidInputError(f"collation missing for {engine.value}")


def generate_create_statement(
    engine: Engine,
    config: CreateDatabaseConfig,
    database_name: str,
    admin_username: str,
) -> str:
    """
    Build the statement that creates `database_name` on `engine`.

    Args:
        engine: Engine of the target instance
        config: The create-database request (charset, collation, owner...)
        database_name: Final database name
        admin_username: Username of the instance's admin data source

    Returns:
        Statement text stored in the create task's sheet

    Raises:
        InvalidInputError: engine has no create statement
    """
    if engine in MYSQL_FAMILY:
        return (
            f"CREATE DATABASE `{database_name}` "
            f"CHARACTER SET {config.character_set} COLLATE {config.collation};"
        )

    if engine == Engine.MSSQL:
        return f'CREATE DATABASE "{database_name}";'

    if engine == Engine.POSTGRES:
        # Cloud providers don't hand out a real superuser, so the admin role
        # has to be granted the owner role before it can hand the database over.
        statement = ""
        if admin_username and config.owner != admin_username:
            statement = f'GRANT "{config.owner}" TO "{admin_username}";\n'
        statement += f'CREATE DATABASE "{database_name}" ENCODING {_quote(config.character_set)}'
        if config.collation:
            statement += f" LC_COLLATE {_quote(config.collation)}"
        statement += ";"
        return f'{statement}\nALTER DATABASE "{database_name}" OWNER TO "{config.owner}";'

    if engine == Engine.CLICKHOUSE:
        cluster = f" ON CLUSTER `{config.cluster}`" if config.cluster else ""
        return f"CREATE DATABASE `{database_name}`{cluster};"

    if engine in (Engine.SNOWFLAKE, Engine.SPANNER, Engine.ORACLE):
        return f"CREATE DATABASE {database_name};"

    if engine == Engine.SQLITE:
        # Not real SQLite; the driver turns it into a new database file.
        return f"CREATE DATABASE '{database_name}';"

    if engine == Engine.MONGODB:
        # The database materializes with its first collection.
        return f'db.createCollection("{config.table}");'

    if engine == Engine.REDSHIFT:
        statement = f'CREATE DATABASE "{database_name}"'
        if admin_username and config.owner != admin_username:
            statement += f" WITH\n\tOWNER={_quote(config.owner)}"
        return f"{statement};"

    raise InvalidInputError(f"unsupported database type {engine.value}")
