"""
Rollout Planner - CREATE DATABASE Statement Tests
==================================================

Engine option checks and the exact statement text per engine.
"""

import pytest

from rollout_planner.core.compiler.statements import (
    check_character_set_collation_owner,
    generate_create_statement,
)
from rollout_planner.core.errors import InvalidInputError
from rollout_planner.core.models import Engine
from rollout_planner.core.schemas import CreateDatabaseConfig


def config(**kwargs) -> CreateDatabaseConfig:
    return CreateDatabaseConfig(target="instances/i1", database="db", **kwargs)


# ==========================================================================
# Option Checks
# ==========================================================================

class TestCharacterSetCollationOwner:
    """Tests for per-engine option validation."""

    @pytest.mark.parametrize(
        "engine,label",
        [
            (Engine.SPANNER, "Spanner"),
            (Engine.CLICKHOUSE, "ClickHouse"),
            (Engine.SNOWFLAKE, "Snowflake"),
        ],
    )
    def test_engines_without_charset_reject_options(self, engine: Engine, label: str):
        with pytest.raises(InvalidInputError) as exc:
            check_character_set_collation_owner(engine, "utf8", "", "")
        assert str(exc.value) == f"{label} does not support character set, but got utf8"

        with pytest.raises(InvalidInputError) as exc:
            check_character_set_collation_owner(engine, "", "utf8_bin", "")
        assert str(exc.value) == f"{label} does not support collation, but got utf8_bin"

        check_character_set_collation_owner(engine, "", "", "")

    @pytest.mark.parametrize(
        "engine,label",
        [(Engine.POSTGRES, "PostgreSQL"), (Engine.REDSHIFT, "Redshift")],
    )
    def test_owner_required(self, engine: Engine, label: str):
        with pytest.raises(InvalidInputError) as exc:
            check_character_set_collation_owner(engine, "UTF8", "", "")
        assert str(exc.value) == f"database owner is required for {label}"

        check_character_set_collation_owner(engine, "", "", "alice")

    @pytest.mark.parametrize("engine", [Engine.SQLITE, Engine.MONGODB, Engine.MSSQL])
    def test_unchecked_engines_accept_anything(self, engine: Engine):
        check_character_set_collation_owner(engine, "", "", "")
        check_character_set_collation_owner(engine, "utf8", "c", "o")

    @pytest.mark.parametrize(
        "engine",
        [Engine.MYSQL, Engine.TIDB, Engine.MARIADB, Engine.OCEANBASE, Engine.ORACLE],
    )
    def test_other_engines_require_charset_and_collation(self, engine: Engine):
        with pytest.raises(InvalidInputError, match="character set missing"):
            check_character_set_collation_owner(engine, "", "utf8mb4_bin", "")
        with pytest.raises(InvalidInputError, match="collation missing"):
            check_character_set_collation_owner(engine, "utf8mb4", "", "")

        check_character_set_collation_owner(engine, "utf8mb4", "utf8mb4_bin", "")


# ==========================================================================
# Statements
# ==========================================================================

class TestGenerateCreateStatement:
    """Tests for statement text."""

    @pytest.mark.parametrize(
        "engine",
        [Engine.MYSQL, Engine.TIDB, Engine.MARIADB, Engine.OCEANBASE],
    )
    def test_mysql_family(self, engine: Engine):
        statement = generate_create_statement(
            engine,
            config(character_set="utf8mb4", collation="utf8mb4_general_ci"),
            "db",
            "root",
        )
        assert statement == "CREATE DATABASE `db` CHARACTER SET utf8mb4 COLLATE utf8mb4_general_ci;"

    def test_mssql(self):
        assert generate_create_statement(Engine.MSSQL, config(), "db", "sa") == 'CREATE DATABASE "db";'

    def test_postgres_grants_owner_to_admin(self):
        statement = generate_create_statement(
            Engine.POSTGRES,
            config(character_set="UTF8", collation="en_US.UTF-8", owner="alice"),
            "db",
            "bytebase",
        )
        assert statement == (
            'GRANT "alice" TO "bytebase";\n'
            'CREATE DATABASE "db" ENCODING "UTF8" LC_COLLATE "en_US.UTF-8";\n'
            'ALTER DATABASE "db" OWNER TO "alice";'
        )

    def test_postgres_admin_owner_skips_grant_and_collation(self):
        statement = generate_create_statement(
            Engine.POSTGRES,
            config(character_set="UTF8", owner="bytebase"),
            "db",
            "bytebase",
        )
        assert statement == (
            'CREATE DATABASE "db" ENCODING "UTF8";\n'
            'ALTER DATABASE "db" OWNER TO "bytebase";'
        )

    def test_clickhouse(self):
        assert (
            generate_create_statement(Engine.CLICKHOUSE, config(), "db", "")
            == "CREATE DATABASE `db`;"
        )
        assert (
            generate_create_statement(Engine.CLICKHOUSE, config(cluster="c1"), "db", "")
            == "CREATE DATABASE `db` ON CLUSTER `c1`;"
        )

    @pytest.mark.parametrize("engine", [Engine.SNOWFLAKE, Engine.SPANNER, Engine.ORACLE])
    def test_unquoted(self, engine: Engine):
        assert generate_create_statement(engine, config(), "DB", "") == "CREATE DATABASE DB;"

    def test_sqlite(self):
        assert generate_create_statement(Engine.SQLITE, config(), "db", "") == "CREATE DATABASE 'db';"

    def test_mongodb_creates_first_collection(self):
        statement = generate_create_statement(Engine.MONGODB, config(table="users"), "db", "")
        assert statement == 'db.createCollection("users");'

    def test_redshift(self):
        assert (
            generate_create_statement(Engine.REDSHIFT, config(owner="alice"), "db", "admin")
            == 'CREATE DATABASE "db" WITH\n\tOWNER="alice";'
        )
        assert (
            generate_create_statement(Engine.REDSHIFT, config(owner="admin"), "db", "admin")
            == 'CREATE DATABASE "db";'
        )

    def test_quoted_values_escape_quotes(self):
        statement = generate_create_statement(
            Engine.POSTGRES,
            config(character_set='UT"F8', owner="bytebase"),
            "db",
            "bytebase",
        )
        assert 'ENCODING "UT\\"F8"' in statement
