# ============================================================================
# PYDANTIC TO SQL GENERATOR
# ============================================================================
# STATUS: Core - DDL generation from Pydantic models
# PURPOSE: Generate PostgreSQL CREATE statements from Pydantic models
# CREATED: 19 OCT 2026
# EXPORTS: PydanticToSQL
# DEPENDENCIES: pydantic, psycopg
# ============================================================================
"""
Pydantic to PostgreSQL Schema Generator.

Generates PostgreSQL DDL statements from Pydantic models.
Pydantic models are the SINGLE SOURCE OF TRUTH for schema.

Model Metadata Convention:
    Models define SQL metadata via ClassVar attributes:
    - __sql_table__: Table name
    - __sql_schema__: Schema name (overridden by the generator's schema)
    - __sql_primary_key__: Primary key column(s) - string or list
    - __sql_foreign_keys__: Dict of {column: "schema.table(column)"}
    - __sql_indexes__: List of index definitions (tuple or dict)
    - __sql_serial_columns__: Columns that should be SERIAL

Enum fields become VARCHAR columns with a CHECK constraint listing the
enum's values.

Usage:
    generator = PydanticToSQL(schema_name="dispatch")
    statements = generator.generate_all()
    async with conn.cursor() as cur:
        for stmt in statements:
            await cur.execute(stmt)
"""

import re
import logging
from typing import Any, Dict, List, Optional, Sequence, Type, Union, get_args, get_origin
from datetime import datetime
from enum import Enum
from pydantic import BaseModel
from pydantic.fields import FieldInfo
from psycopg import sql
from annotated_types import MaxLen

from core.schema.ddl_utils import CheckBuilder, IndexBuilder, SchemaUtils, TriggerBuilder

logger = logging.getLogger(__name__)

ENUM_COLUMN_LENGTH = 32


class PydanticToSQL:
    """
    Convert Pydantic models to PostgreSQL DDL statements.

    Analyzes Pydantic models with __sql_* metadata and generates
    corresponding PostgreSQL CREATE TABLE statements.
    """

    TYPE_MAP = {
        str: "VARCHAR",
        int: "INTEGER",
        float: "DOUBLE PRECISION",
        bool: "BOOLEAN",
        datetime: "TIMESTAMPTZ",
        dict: "JSONB",
        list: "JSONB",
    }

    def __init__(self, schema_name: str = "dispatch"):
        self.schema_name = schema_name

    # =========================================================================
    # METADATA EXTRACTION
    # =========================================================================

    @staticmethod
    def get_model_metadata(model: Type[BaseModel]) -> Dict[str, Any]:
        """
        Extract SQL DDL metadata from a Pydantic model.

        Returns:
            Dict with table, schema, primary_key, foreign_keys, indexes, serial_columns
        """
        metadata = {
            "table": getattr(model, "__sql_table__", None),
            "schema": getattr(model, "__sql_schema__", "dispatch"),
            "primary_key": getattr(model, "__sql_primary_key__", []),
            "foreign_keys": getattr(model, "__sql_foreign_keys__", {}),
            "indexes": getattr(model, "__sql_indexes__", []),
            "serial_columns": getattr(model, "__sql_serial_columns__", []),
        }

        if isinstance(metadata["primary_key"], str):
            metadata["primary_key"] = [metadata["primary_key"]]

        return metadata

    # =========================================================================
    # TYPE CONVERSION
    # =========================================================================

    @staticmethod
    def unwrap_optional(field_type: Any) -> tuple:
        """Return (inner_type, is_optional) for Optional[X]."""
        if get_origin(field_type) is Union:
            args = [a for a in get_args(field_type) if a is not type(None)]
            if len(args) < len(get_args(field_type)):
                return args[0], True
        return field_type, False

    def python_type_to_sql(self, field_type: Type, field_info: FieldInfo) -> str:
        """
        Convert Python type to PostgreSQL type.

        Args:
            field_type: Python type from Pydantic model (already unwrapped)
            field_info: Pydantic field information

        Returns:
            PostgreSQL type string
        """
        origin = get_origin(field_type)
        if origin in (dict, list):
            return "JSONB"

        if isinstance(field_type, type) and issubclass(field_type, Enum):
            return f"VARCHAR({ENUM_COLUMN_LENGTH})"

        if field_type is str:
            for constraint in field_info.metadata or []:
                if isinstance(constraint, MaxLen):
                    return f"VARCHAR({constraint.max_length})"
            return "VARCHAR"

        return self.TYPE_MAP.get(field_type, "JSONB")

    @staticmethod
    def _default_clause(field_info: FieldInfo, sql_type: str) -> Optional[sql.Composable]:
        default = field_info.default
        if field_info.default_factory is not None:
            if sql_type == "TIMESTAMPTZ":
                return sql.SQL(" DEFAULT NOW()")
            if sql_type == "JSONB":
                return sql.SQL(" DEFAULT '{}'")
            return None

        if field_info.is_required() or default is None:
            return None
        if isinstance(default, Enum):
            return sql.SQL(" DEFAULT {}").format(sql.Literal(default.value))
        if isinstance(default, bool):
            return sql.SQL(" DEFAULT true" if default else " DEFAULT false")
        if isinstance(default, (str, int, float)):
            return sql.SQL(" DEFAULT {}").format(sql.Literal(default))
        return None

    # =========================================================================
    # TABLE GENERATION
    # =========================================================================

    def generate_table(self, model: Type[BaseModel]) -> sql.Composed:
        """
        Generate CREATE TABLE DDL from a Pydantic model.

        Args:
            model: Pydantic model with __sql_* metadata

        Returns:
            sql.Composed CREATE TABLE statement
        """
        meta = self.get_model_metadata(model)
        table_name = meta["table"]
        primary_key = meta["primary_key"]
        serial_columns = meta["serial_columns"]

        if not table_name:
            raise ValueError(f"Model {model.__name__} missing __sql_table__ attribute")

        logger.debug(f"Generating table {self.schema_name}.{table_name} from {model.__name__}")

        columns = []
        constraints = []
        nullable = set()

        for field_name, field_info in model.model_fields.items():
            inner_type, is_optional = self.unwrap_optional(field_info.annotation)
            if is_optional:
                nullable.add(field_name)

            if field_name in serial_columns:
                sql_type_str = "SERIAL"
            else:
                sql_type_str = self.python_type_to_sql(inner_type, field_info)

            column_parts = [sql.Identifier(field_name), sql.SQL(" "), sql.SQL(sql_type_str)]

            if not is_optional and field_name not in primary_key and sql_type_str != "SERIAL":
                column_parts.append(sql.SQL(" NOT NULL"))

            default_clause = self._default_clause(field_info, sql_type_str)
            if default_clause is not None and sql_type_str != "SERIAL":
                column_parts.append(default_clause)

            columns.append(sql.Composed(column_parts))

            if isinstance(inner_type, type) and issubclass(inner_type, Enum):
                constraints.append(CheckBuilder.enum_values(field_name, inner_type))

        if primary_key:
            constraints.insert(0, sql.SQL("PRIMARY KEY ({})").format(
                sql.SQL(", ").join(sql.Identifier(col) for col in primary_key)
            ))

        # Foreign keys always point into the generator's schema
        for fk_column, fk_reference in meta["foreign_keys"].items():
            match = re.match(r"(?:\w+\.)?(\w+)\((\w+)\)", fk_reference)
            if not match:
                logger.warning(f"Skipping malformed foreign key on {table_name}.{fk_column}: {fk_reference}")
                continue
            ref_table, ref_column = match.groups()
            on_delete = "SET NULL" if fk_column in nullable else "CASCADE"
            constraints.append(
                sql.SQL("FOREIGN KEY ({}) REFERENCES {}.{} ({}) ON DELETE {}").format(
                    sql.Identifier(fk_column),
                    sql.Identifier(self.schema_name),
                    sql.Identifier(ref_table),
                    sql.Identifier(ref_column),
                    sql.SQL(on_delete),
                )
            )

        return sql.SQL("CREATE TABLE IF NOT EXISTS {}.{} ({})").format(
            sql.Identifier(self.schema_name),
            sql.Identifier(table_name),
            sql.SQL(", ").join(columns + constraints)
        )

    # =========================================================================
    # INDEX GENERATION
    # =========================================================================

    def generate_indexes(self, model: Type[BaseModel]) -> List[sql.Composed]:
        """
        Generate CREATE INDEX statements from a Pydantic model's __sql_indexes__.

        Tuple format: (name, columns) or (name, columns, partial_where)
        Dict format: {name, columns, partial_where?, descending?, unique?}
        """
        meta = self.get_model_metadata(model)
        table_name = meta["table"]

        result = []

        for idx_def in meta["indexes"]:
            if isinstance(idx_def, tuple):
                name = idx_def[0]
                columns = idx_def[1] if len(idx_def) > 1 else []
                partial_where = idx_def[2] if len(idx_def) > 2 else None
                descending = False
                unique = False
            elif isinstance(idx_def, dict):
                name = idx_def.get("name")
                columns = idx_def.get("columns", [])
                partial_where = idx_def.get("partial_where")
                descending = idx_def.get("descending", False)
                unique = idx_def.get("unique", False)
            else:
                continue

            if not columns or not name:
                continue

            result.append(IndexBuilder.btree(
                self.schema_name, table_name, columns,
                name=name,
                partial_where=partial_where,
                descending=descending,
                unique=unique,
            ))

        return result

    # =========================================================================
    # COMPLETE SCHEMA GENERATION
    # =========================================================================

    def default_models(self) -> List[Type[BaseModel]]:
        from core.models import Task, TaskRun, Activity
        return [Task, TaskRun, Activity]

    def generate_all(
        self,
        models: Optional[Sequence[Type[BaseModel]]] = None,
        drop_first: bool = False,
    ) -> List[sql.Composed]:
        """
        Generate complete DDL for the engine's tables.

        Args:
            models: Models to generate, in dependency order (default: all)
            drop_first: Prepend DROP SCHEMA CASCADE (development rebuild only)

        Returns:
            List of sql.Composed statements ready for execution
        """
        models = list(models or self.default_models())
        statements = []

        if drop_first:
            statements.append(SchemaUtils.drop_schema(self.schema_name))

        statements.extend(SchemaUtils.create_schema(
            self.schema_name, comment="Task dispatch and lifecycle engine"
        ))

        for model in models:
            statements.append(self.generate_table(model))
        for model in models:
            statements.extend(self.generate_indexes(model))

        statements.append(TriggerBuilder.updated_at_function(self.schema_name))
        for model in models:
            if "updated_at" in model.model_fields:
                statements.extend(TriggerBuilder.updated_at_trigger(
                    self.schema_name, self.get_model_metadata(model)["table"]
                ))

        logger.info(f"Generated {len(statements)} DDL statements for schema {self.schema_name}")
        return statements

    async def execute(self, conn, dry_run: bool = False, drop_first: bool = False) -> int:
        """
        Execute all DDL statements on an async psycopg connection.

        Returns:
            Number of statements executed (or generated, for dry runs)
        """
        statements = self.generate_all(drop_first=drop_first)

        if dry_run:
            for stmt in statements:
                logger.info(f"[DRY RUN] {stmt.as_string(conn)[:100]}...")
            return len(statements)

        async with conn.cursor() as cur:
            for stmt in statements:
                await cur.execute(stmt)

        logger.info(f"Executed {len(statements)} DDL statements")
        return len(statements)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ['PydanticToSQL']
