from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EdgeLedgerConfig(BaseSettings):
    """Configuration for EdgeLedger.

    Settings can be provided via environment variables with EDGELEDGER_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="EDGELEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage backend
    graph_store: Literal["kuzu", "neo4j"] = "kuzu"

    # Home directory for the embedded database
    # Default: ~/.edgeledger
    home: Path | None = None

    # Neo4j configuration (only used when graph_store="neo4j")
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: str = "password"
    neo4j_database: str = "neo4j"

    # Namespace for Neo4j multi-tenant isolation
    namespace: str | None = None

    # History entries older than this are purged by the retention janitor
    retention_days: int = Field(default=365, ge=0)

    # Seconds between background retention sweeps while the HTTP API runs;
    # unset disables scheduled sweeps
    retention_interval_seconds: float | None = Field(default=None, gt=0)

    # Refuse to invert CREATED/MODIFIED entries when the live connection has
    # changed since the entry was recorded
    strict_rollback: bool = True

    # Upper bound for limit on history queries exposed over HTTP
    max_page_size: int = Field(default=500, ge=1)

    def get_home(self) -> Path:
        """Get the home directory for storage."""
        return self.home or Path.home() / ".edgeledger"

    def get_graph_path(self) -> Path:
        """Get the Kùzu database path (only used when graph_store='kuzu')."""
        return self.get_home() / "graph"
