"""
Identifier case probe for MySQL-family instances.

MySQL, MariaDB and OceanBase fold database names to lower case when the
server runs with lower_case_table_names=1. The probe asks the server
through its admin data source. It is best effort: any failure is logged
and reported as "unknown", and the caller keeps the name as written.
"""

import asyncio
import enum
import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import create_async_engine

from rollout_planner.core.config import settings
from rollout_planner.core.models import DataSource, Engine, Instance

logger = logging.getLogger(__name__)

# Engines whose database names depend on lower_case_table_names.
PROBED_ENGINES = frozenset({Engine.MYSQL, Engine.MARIADB, Engine.OCEANBASE})


class CasePolicy(str, enum.Enum):
    """How an instance treats the case of database names."""
    PRESERVE = "PRESERVE"
    LOWER = "LOWER"

    def apply(self, name: str) -> str:
        if self is CasePolicy.LOWER:
            return name.lower()
        return name


class CasePolicyProbe:
    """
    Reads lower_case_table_names over the instance's admin connection.

    Subclasses may override `fetch_lower_case_table_names` to reach the
    server some other way; `probe` keeps the failure policy.
    """

    driver = "mysql+aiomysql"

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else settings.CASE_PROBE_TIMEOUT_SECONDS

    async def probe(self, instance: Instance, data_source: DataSource) -> Optional[CasePolicy]:
        if instance.engine not in PROBED_ENGINES:
            return None
        try:
            value = await asyncio.wait_for(
                self.fetch_lower_case_table_names(data_source),
                timeout=self.timeout,
            )
        except Exception as e:
            logger.warning(
                f"Failed to get lower_case_table_names for instance {instance.title!r}, "
                f"keeping the database name as written: {e}"
            )
            return None

        if value == 1:
            return CasePolicy.LOWER
        return CasePolicy.PRESERVE

    async def fetch_lower_case_table_names(self, data_source: DataSource) -> int:
        url = URL.create(
            self.driver,
            username=data_source.username or None,
            password=data_source.password or None,
            host=data_source.host or None,
            port=int(data_source.port) if data_source.port else None,
        )
        engine = create_async_engine(url, pool_pre_ping=False)
        try:
            async with engine.connect() as conn:
                result = await conn.execute(
                    text("SHOW VARIABLES LIKE 'lower_case_table_names'")
                )
                row = result.first()
        finally:
            await engine.dispose()

        if row is None:
            raise LookupError("lower_case_table_names is not reported by the server")
        return int(row[1])
