"""
Configuration management for tmharness.

Settings are read from keyword overrides, then ``TMHARNESS_*`` environment
variables, then a ``.env`` file, then the defaults below.
"""
import importlib
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode

from tmharness.errors import ConfigurationError
from tmharness.nemesis.profiles import NemesisProfile, parse_profile


class Settings(BaseSettings):
    """Options for one test run."""

    # Cluster
    nodes: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["n1", "n2", "n3", "n4", "n5"],
        description="Cluster membership, in order. Accepts a comma-separated string.",
    )
    enable_duplicated_identity: bool = False
    versions: Dict[str, str] = Field(
        default_factory=lambda: {"tendermint": "0.10.0", "abci": "0.5.0", "merkleeyes": "0.2.2"}
    )

    # Faults
    nemesis_profile: NemesisProfile = NemesisProfile.NONE
    ntp_server: str = "pool.ntp.org"

    # Workload
    time_limit: float = 60.0
    concurrency: Optional[int] = None
    ops_per_key: int = 100
    stagger: float = 0.5

    # RPC
    rpc_port: int = 46657
    rpc_timeout: float = 5.0

    # Remote control
    ssh_user: str = "root"
    ssh_options: List[str] = Field(
        default_factory=lambda: ["-o", "StrictHostKeyChecking=no", "-o", "BatchMode=yes"]
    )

    # Output
    store_dir: Path = Path("store")
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @field_validator("nodes", mode="before")
    @classmethod
    def split_nodes(cls, v):
        """Accept ``"n1,n2,n3"`` as well as a list."""
        if isinstance(v, str):
            return [node.strip() for node in v.split(",") if node.strip()]
        return v

    @field_validator("nodes")
    @classmethod
    def validate_nodes(cls, v):
        """Membership must be non-empty and free of duplicates."""
        if not v:
            raise ValueError("at least one node is required")
        if len(set(v)) != len(v):
            raise ValueError("node names must be distinct")
        return v

    @field_validator("nemesis_profile", mode="before")
    @classmethod
    def resolve_profile(cls, v):
        """Resolve profile names and the legacy aliases."""
        try:
            return parse_profile(v)
        except ConfigurationError as exc:
            raise ValueError(str(exc)) from exc

    @field_validator("time_limit", "stagger", "rpc_timeout")
    @classmethod
    def validate_non_negative(cls, v, info):
        if v < 0 or (v == 0 and info.field_name != "stagger"):
            raise ValueError(f"{info.field_name} must be positive")
        return v

    @field_validator("concurrency", "ops_per_key")
    @classmethod
    def validate_positive_int(cls, v, info):
        if v is not None and v < 1:
            raise ValueError(f"{info.field_name} must be at least 1")
        return v

    @property
    def effective_concurrency(self) -> int:
        """Configured concurrency, defaulting to two workers per node."""
        return self.concurrency or 2 * len(self.nodes)

    model_config = {
        "env_file": ".env",
        "env_prefix": "TMHARNESS_",
        "case_sensitive": False,
        "extra": "ignore",
    }


def get_settings(**overrides) -> Settings:
    """Build settings, letting keyword *overrides* win over the environment."""
    return Settings(**overrides)


def import_string(path: str) -> Any:
    """Import ``"package.module:attribute"`` and return the attribute.

    Raises:
        ConfigurationError: the path is malformed or cannot be imported.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"expected 'module:attribute', got {path!r}")
    try:
        return getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as exc:
        raise ConfigurationError(f"cannot load {path!r}: {exc}") from exc
