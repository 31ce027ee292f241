"""
Configuration system for pgreconcile using Pydantic.

Two kinds of configuration live here: the target schema description
(what the database should look like) and the runtime settings
(credentials, backend choice, HTTP server, logging).
"""

import logging
import logging.handlers
import os
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError, ValidationError


IDENTIFIER_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*$")
MAX_IDENTIFIER_LENGTH = 63  # PostgreSQL NAMEDATALEN - 1


def validate_identifier(value: str, kind: str = "identifier") -> str:
    """Check that a name is a plain lowercase PostgreSQL identifier."""
    if not value or not IDENTIFIER_PATTERN.match(value):
        raise ValueError(
            f"Invalid {kind} '{value}': use lowercase letters, digits and underscores"
        )
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(
            f"Invalid {kind} '{value}': longer than {MAX_IDENTIFIER_LENGTH} characters"
        )
    return value


class ColumnType(str, Enum):
    """Column types a target schema may declare."""

    TIMESTAMPTZ = "timestamptz"
    JSONB = "jsonb"
    TEXT = "text"

    @property
    def sql_type(self) -> str:
        """Type name as written in DDL."""
        return self.value.upper()

    @property
    def catalog_type(self) -> str:
        """Type name as reported by information_schema.columns.data_type."""
        return {
            ColumnType.TIMESTAMPTZ: "timestamp with time zone",
            ColumnType.JSONB: "jsonb",
            ColumnType.TEXT: "text",
        }[self]


class ColumnSpec(BaseModel):
    """A column that must exist on a table."""

    name: str = Field(..., description="Column name")
    type: ColumnType = Field(..., description="Declared column type")
    default: Optional[str] = Field(None, description="Default value SQL expression")

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        return validate_identifier(v, "column name")

    @field_validator("default")
    @classmethod
    def check_default(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Default expression must not be empty")
        if ";" in v:
            raise ValueError("Default expression must be a single expression")
        return v

    @property
    def definition(self) -> str:
        """Column definition used in ADD COLUMN."""
        parts = [self.name, self.type.sql_type]
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        return " ".join(parts)


class UniqueIndexSpec(BaseModel):
    """A unique index that must exist."""

    name: str = Field(..., description="Index name")
    table: Optional[str] = Field(
        None, description="Owning table (defaults to the enclosing table)"
    )
    columns: List[str] = Field(..., description="Columns forming the uniqueness key")

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        return validate_identifier(v, "index name")

    @field_validator("table")
    @classmethod
    def check_table(cls, v: Optional[str]) -> Optional[str]:
        return validate_identifier(v, "table name") if v is not None else v

    @field_validator("columns")
    @classmethod
    def check_columns(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("A unique index needs at least one column")
        if len(set(v)) != len(v):
            raise ValueError(f"Duplicate columns in index key: {v}")
        return [validate_identifier(c, "index column") for c in v]


class TableSpec(BaseModel):
    """Columns and unique indexes one table must have."""

    name: str = Field(..., description="Table name")
    columns: List[ColumnSpec] = Field(default_factory=list, description="Required columns")
    unique_indexes: List[UniqueIndexSpec] = Field(
        default_factory=list, description="Required unique indexes"
    )

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        return validate_identifier(v, "table name")

    @model_validator(mode="after")
    def check_members(self) -> "TableSpec":
        names = [c.name for c in self.columns]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Table {self.name} declares duplicate columns: {duplicates}")

        for index in self.unique_indexes:
            if index.table is None:
                index.table = self.name
            elif index.table != self.name:
                raise ValueError(
                    f"Index {index.name} is declared under table {self.name} "
                    f"but targets table {index.table}"
                )
        return self

    def has_column(self, column_name: str) -> bool:
        """Check if the table declares a column."""
        return any(c.name == column_name for c in self.columns)


class TargetSchema(BaseModel):
    """Desired end state of the managed tables."""

    schema_name: str = Field("public", description="Database schema holding the tables")
    tables: List[TableSpec] = Field(default_factory=list, description="Managed tables")

    @field_validator("schema_name")
    @classmethod
    def check_schema_name(cls, v: str) -> str:
        return validate_identifier(v, "schema name")

    @model_validator(mode="after")
    def check_unique_names(self) -> "TargetSchema":
        table_names = [t.name for t in self.tables]
        duplicates = sorted({n for n in table_names if table_names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate tables in target schema: {duplicates}")

        index_names = [i.name for t in self.tables for i in t.unique_indexes]
        duplicates = sorted({n for n in index_names if index_names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate index names in target schema: {duplicates}")
        return self

    @property
    def table_names(self) -> List[str]:
        return [t.name for t in self.tables]

    def qualified(self, table: str) -> str:
        """Get the schema-qualified table name."""
        return f"{self.schema_name}.{table}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TargetSchema":
        """Build a target schema, raising ValidationError on bad input."""
        try:
            return cls(**data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid target schema: {e}") from e

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "TargetSchema":
        """Load a target schema from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Schema file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in schema file: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Schema file {path} must contain a mapping")

        return cls.from_dict(_expand_env_vars(data))

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save the target schema to a YAML file."""
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(
                self.model_dump(mode="json", exclude_none=True),
                f,
                default_flow_style=False,
                sort_keys=False,
                indent=2,
            )


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand environment variables in configuration data."""
    if isinstance(data, dict):
        return {k: _expand_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        return os.path.expandvars(data)
    else:
        return data


CACHE_TABLES = ("pipes_cache", "members_cache")


def default_target_schema() -> TargetSchema:
    """The cache tables the dashboard reads: payload, ownership and freshness columns."""
    return TargetSchema(
        schema_name="public",
        tables=[
            TableSpec(
                name=table,
                columns=[
                    ColumnSpec(name="updated_at", type=ColumnType.TIMESTAMPTZ, default="now()"),
                    ColumnSpec(name="data", type=ColumnType.JSONB),
                    ColumnSpec(name="organization_id", type=ColumnType.TEXT),
                ],
                unique_indexes=[
                    UniqueIndexSpec(
                        name=f"{table}_user_org_unique",
                        columns=["user_id", "organization_id"],
                    ),
                ],
            )
            for table in CACHE_TABLES
        ],
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")
    max_size: int = Field(10485760, description="Max log file size in bytes")  # 10MB
    backup_count: int = Field(5, description="Number of backup log files")


def setup_logging(config: LoggingConfig, debug: bool = False) -> None:
    """Configure the root logger from a LoggingConfig."""
    level = logging.DEBUG if debug else getattr(logging, config.level)
    formatter = logging.Formatter(config.format)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if config.file:
        file_handler = logging.handlers.RotatingFileHandler(
            config.file,
            maxBytes=config.max_size,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # asyncio is chatty at DEBUG
    if not debug:
        logging.getLogger("asyncio").setLevel(logging.WARNING)


class ReconcilerSettings(BaseSettings):
    """Runtime settings for pgreconcile."""

    backend: Literal["rest", "postgres"] = Field(
        "rest", description="Privileged execution path"
    )

    # Supabase / PostgREST backend
    supabase_url: Optional[str] = Field(
        None,
        description="Project URL of the backend-as-a-service",
        validation_alias=AliasChoices("PGRECONCILE_SUPABASE_URL", "SUPABASE_URL", "supabase_url"),
    )
    service_role_key: Optional[str] = Field(
        None,
        description="Service role key used for privileged calls",
        validation_alias=AliasChoices(
            "PGRECONCILE_SERVICE_ROLE_KEY", "SUPABASE_SERVICE_ROLE_KEY", "service_role_key"
        ),
    )
    rpc_function: str = Field("exec_sql", description="Remote procedure that executes SQL")
    request_timeout: float = Field(30.0, description="HTTP request timeout in seconds")

    # Direct PostgreSQL backend
    database_url: Optional[str] = Field(
        None,
        description="postgresql:// connection URL",
        validation_alias=AliasChoices("PGRECONCILE_DATABASE_URL", "DATABASE_URL", "database_url"),
    )
    command_timeout: float = Field(60.0, description="Statement timeout in seconds")

    # Target schema
    schema_file: Optional[str] = Field(
        None, description="YAML target schema (bundled cache schema when unset)"
    )
    db_schema: Optional[str] = Field(
        None, description="Override the target schema's database schema name"
    )

    # HTTP endpoint
    host: str = Field("0.0.0.0", description="Bind address")
    port: int = Field(8000, description="Bind port")
    endpoint_path: str = Field("/run-migration", description="Reconciliation endpoint path")

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PGRECONCILE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    @field_validator("supabase_url")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        return v.rstrip("/") if v else v

    @field_validator("endpoint_path")
    @classmethod
    def check_endpoint_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("endpoint_path must start with '/'")
        return v

    def validate_settings(self) -> None:
        """Check that the selected backend has the credentials it needs."""
        if self.backend == "rest":
            missing = [
                name for name, value in (
                    ("SUPABASE_URL", self.supabase_url),
                    ("SUPABASE_SERVICE_ROLE_KEY", self.service_role_key),
                ) if not value
            ]
            if missing:
                raise ConfigurationError(
                    f"REST backend requires {', '.join(missing)}"
                )
        elif self.backend == "postgres" and not self.database_url:
            raise ConfigurationError("Postgres backend requires DATABASE_URL")

    def load_target_schema(self) -> TargetSchema:
        """Load the target schema named by these settings."""
        schema = (
            TargetSchema.from_yaml(self.schema_file)
            if self.schema_file
            else default_target_schema()
        )
        if self.db_schema:
            schema = TargetSchema.from_dict(
                {**schema.model_dump(), "schema_name": self.db_schema}
            )
        return schema
