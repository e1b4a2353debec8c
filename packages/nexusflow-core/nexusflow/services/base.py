"""
Shared plumbing for the record store services.
"""

import re
from typing import Any

from nexusflow.db import get_adapter

_PLACEHOLDER = re.compile(r"\$(\d+)")


def shift_placeholders(sql: str, base: int) -> str:
    """Renumber $1, $2... in sql to start after base."""
    return _PLACEHOLDER.sub(lambda m: f"${base + int(m.group(1))}", sql)


class BaseService:
    """
    Holds the database adapter and builds parameterised statements.

    Queries use $1, $2 placeholders; the adapter converts them for SQLite, so
    parameters must appear in the statement in numeric order.
    """

    def __init__(self, adapter=None):
        """
        Initialize the service.

        Args:
            adapter: Optional DatabaseAdapter. If not provided, uses global adapter.
        """
        self._adapter = adapter

    @property
    def adapter(self):
        """Get the database adapter."""
        if self._adapter is None:
            self._adapter = get_adapter()
        return self._adapter

    def _insert_sql(
        self,
        table: str,
        row: dict[str, Any],
        conflict_target: tuple[str, ...] = (),
        computed: dict[str, str] | None = None,
    ) -> str:
        """
        INSERT of row, skipped when it collides on conflict_target.

        computed maps extra columns to SQL expressions whose placeholders are
        numbered from 1; they are renumbered after the row parameters.
        """
        columns = list(row)
        values = [f"${i+1}" for i in range(len(row))]
        for column, expression in (computed or {}).items():
            columns.append(column)
            values.append(shift_placeholders(expression, len(row)))

        sql = (
            f"INSERT INTO {self.adapter.table(table)} ({', '.join(columns)}) "
            f"VALUES ({', '.join(values)})"
        )
        if conflict_target:
            sql += f" ON CONFLICT ({', '.join(conflict_target)}) DO NOTHING"
        return sql

    async def _update_fields(
        self,
        table: str,
        record_id: str,
        fields: dict[str, Any],
        condition: str | None = None,
        condition_params: tuple = (),
        computed: dict[str, str] | None = None,
        computed_params: tuple = (),
    ) -> str:
        """
        UPDATE table SET fields WHERE id = record_id [AND condition].

        computed maps columns to SQL expressions, set after the plain fields.
        computed and condition use placeholders numbered from 1; they are
        renumbered to follow the parameters before them.

        Returns:
            Status string from the adapter
        """
        columns = list(fields)
        params = [fields[c] for c in columns]
        assignments = [f"{col} = ${i+1}" for i, col in enumerate(columns)]

        if computed:
            base = len(params)
            for column, expression in computed.items():
                assignments.append(f"{column} = {shift_placeholders(expression, base)}")
            params.extend(computed_params)

        params.append(record_id)
        where = f"id = ${len(params)}"

        if condition:
            where += f" AND ({shift_placeholders(condition, len(params))})"
            params.extend(condition_params)

        query = f"UPDATE {self.adapter.table(table)} SET {', '.join(assignments)} WHERE {where}"
        return await self.adapter.execute(query, *params)
