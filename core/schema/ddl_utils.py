# ============================================================================
# DDL UTILITIES
# ============================================================================
# STATUS: Core - DRY utilities for SQL DDL generation
# PURPOSE: Index, check-constraint, trigger and schema builders using psycopg.sql
# CREATED: 19 OCT 2026
# EXPORTS: IndexBuilder, CheckBuilder, TriggerBuilder, SchemaUtils
# DEPENDENCIES: psycopg
# ============================================================================
"""
DDL Utilities - Shared SQL Generation Patterns.

All methods return psycopg.sql.Composed objects for safe execution.
No string concatenation of identifiers - full SQL composition.

Usage:
    from core.schema.ddl_utils import IndexBuilder, TriggerBuilder

    idx = IndexBuilder.unique('dispatch', 'task_runs', ['task_id', 'run_number'])
    cursor.execute(idx)

    for stmt in TriggerBuilder.updated_at('dispatch', 'tasks'):
        cursor.execute(stmt)
"""

from enum import Enum
from typing import List, Optional, Sequence, Type, Union
from psycopg import sql


# ============================================================================
# INDEX BUILDER
# ============================================================================

class IndexBuilder:
    """
    Builder for PostgreSQL index DDL statements.

    All methods are static and return sql.Composed objects.
    """

    @staticmethod
    def _normalize_columns(columns: Union[str, Sequence[str]]) -> List[str]:
        if isinstance(columns, str):
            return [columns]
        return list(columns)

    @staticmethod
    def _generate_index_name(table: str, columns: List[str], prefix: str = 'idx') -> str:
        return f"{prefix}_{table}_{'_'.join(columns)}"

    @staticmethod
    def btree(
        schema: str,
        table: str,
        columns: Union[str, Sequence[str]],
        name: Optional[str] = None,
        descending: bool = False,
        partial_where: Optional[str] = None,
        unique: bool = False,
    ) -> sql.Composed:
        """
        Create B-tree index.

        Args:
            schema: Schema name
            table: Table name
            columns: Column name(s) to index
            name: Optional custom index name
            descending: If True, create DESC index
            partial_where: Optional WHERE clause for partial index
            unique: If True, create UNIQUE index

        Returns:
            sql.Composed CREATE INDEX statement
        """
        cols = IndexBuilder._normalize_columns(columns)
        idx_name = name or IndexBuilder._generate_index_name(
            table, cols, prefix='idx_unique' if unique else 'idx'
        )

        if descending:
            col_parts = [sql.SQL("{} DESC").format(sql.Identifier(c)) for c in cols]
        else:
            col_parts = [sql.Identifier(c) for c in cols]

        stmt = sql.SQL("CREATE {unique}INDEX IF NOT EXISTS {name} ON {schema}.{table} ({columns})").format(
            unique=sql.SQL("UNIQUE " if unique else ""),
            name=sql.Identifier(idx_name),
            schema=sql.Identifier(schema),
            table=sql.Identifier(table),
            columns=sql.SQL(", ").join(col_parts),
        )

        if partial_where:
            stmt = sql.SQL("{} WHERE {}").format(stmt, sql.SQL(partial_where))

        return stmt

    @staticmethod
    def unique(
        schema: str,
        table: str,
        columns: Union[str, Sequence[str]],
        name: Optional[str] = None,
    ) -> sql.Composed:
        """Create unique index."""
        return IndexBuilder.btree(schema, table, columns, name=name, unique=True)


# ============================================================================
# CHECK CONSTRAINT BUILDER
# ============================================================================

class CheckBuilder:
    """
    Builder for CHECK constraints.

    Status vocabularies are stored as VARCHAR constrained to the enum's
    values, so new states only need a constraint swap, never a type change.
    """

    @staticmethod
    def enum_values(column: str, enum_class: Type[Enum]) -> sql.Composed:
        """CHECK (column IN (...)) clause for use inside CREATE TABLE."""
        values = sql.SQL(", ").join(sql.Literal(member.value) for member in enum_class)
        return sql.SQL("CHECK ({column} IN ({values}))").format(
            column=sql.Identifier(column),
            values=values,
        )


# ============================================================================
# TRIGGER BUILDER
# ============================================================================

class TriggerBuilder:
    """
    Builder for PostgreSQL trigger DDL statements.
    """

    @staticmethod
    def updated_at_function(schema: str) -> sql.Composed:
        """
        Create the update_updated_at_column() trigger function.
        """
        return sql.SQL("""
            CREATE OR REPLACE FUNCTION {schema}.update_updated_at_column()
            RETURNS TRIGGER
            LANGUAGE plpgsql
            AS $$
            BEGIN
                NEW.updated_at = NOW();
                RETURN NEW;
            END;
            $$
        """).format(schema=sql.Identifier(schema))

    @staticmethod
    def updated_at_trigger(
        schema: str,
        table: str,
        trigger_name: Optional[str] = None
    ) -> List[sql.Composed]:
        """
        Create trigger that calls update_updated_at_column() on UPDATE.

        Returns DROP + CREATE for idempotency.
        """
        trig_name = trigger_name or f"trg_{table}_updated_at"

        drop_stmt = sql.SQL("DROP TRIGGER IF EXISTS {name} ON {schema}.{table}").format(
            name=sql.Identifier(trig_name),
            schema=sql.Identifier(schema),
            table=sql.Identifier(table)
        )

        create_stmt = sql.SQL("""
            CREATE TRIGGER {name}
            BEFORE UPDATE ON {schema}.{table}
            FOR EACH ROW
            EXECUTE FUNCTION {schema}.update_updated_at_column()
        """).format(
            name=sql.Identifier(trig_name),
            schema=sql.Identifier(schema),
            table=sql.Identifier(table)
        )

        return [drop_stmt, create_stmt]


# ============================================================================
# SCHEMA UTILITIES
# ============================================================================

class SchemaUtils:
    """
    Utility methods for schema-level DDL operations.
    """

    @staticmethod
    def create_schema(schema: str, comment: Optional[str] = None) -> List[sql.Composed]:
        """
        Create schema with optional comment.
        """
        stmts = [
            sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(schema))
        ]

        if comment:
            stmts.append(sql.SQL("COMMENT ON SCHEMA {} IS {}").format(
                sql.Identifier(schema),
                sql.Literal(comment)
            ))

        return stmts

    @staticmethod
    def drop_schema(schema: str) -> sql.Composed:
        """
        DROP SCHEMA CASCADE.

        WARNING: This destroys ALL data in the schema!
        """
        return sql.SQL("DROP SCHEMA IF EXISTS {} CASCADE").format(sql.Identifier(schema))


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    'IndexBuilder',
    'CheckBuilder',
    'TriggerBuilder',
    'SchemaUtils',
]
