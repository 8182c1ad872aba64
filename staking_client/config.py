"""
Configuration management for the staking client.

This module provides type-safe configuration handling with validation.
"""

import json
from pathlib import Path
from typing import Union, Dict, Any
from dataclasses import dataclass, asdict, fields


# camelCase keys used in JSON config files
_FILE_KEYS = {
    "data_dir_path": "dataDirPath",
    "contract_index": "contractIndex",
    "contract_subindex": "contractSubindex",
    "contract_name": "contractName",
    "module_ref": "moduleRef",
    "token_contract_index": "tokenContractIndex",
    "token_contract_name": "tokenContractName",
    "schema_version": "schemaVersion",
    "max_contract_execution_energy": "maxContractExecutionEnergy",
    "finalization_timeout": "finalizationTimeout",
    "refresh_grace_delay": "refreshGraceDelay",
    "step_retention_delay": "stepRetentionDelay",
    "micro_units": "microUnits",
}


@dataclass
class Config:
    """Configuration for the staking client."""

    data_dir_path: str = "/tmp/staking/"
    contract_index: int = 10416
    contract_subindex: int = 0
    contract_name: str = "concordium_staking"
    module_ref: str = "04ee67dbdc38f2b86237ccbc1e2c0d139ad9c13324a0c02d3aa9eb0c627649ec"
    token_contract_index: int = 7260
    token_contract_name: str = "euroe_stablecoin"
    schema_version: int = 1
    max_contract_execution_energy: int = 30000
    finalization_timeout: float = 120.0
    refresh_grace_delay: float = 10.0
    step_retention_delay: float = 30.0
    micro_units: int = 1_000_000

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not isinstance(self.data_dir_path, str) or not self.data_dir_path.strip():
            raise ValueError(
                f"Invalid data_dir_path: {self.data_dir_path}. Must be a non-empty string."
            )

        for name in ("contract_index", "contract_subindex", "token_contract_index"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                raise ValueError(f"Invalid {name}: {value}. Must be a non-negative integer.")

        for name in ("contract_name", "token_contract_name"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"Invalid {name}: {value}. Must be a non-empty string.")

        try:
            ref_ok = len(bytes.fromhex(self.module_ref)) == 32
        except (TypeError, ValueError):
            ref_ok = False
        if not ref_ok:
            raise ValueError(
                f"Invalid module_ref: {self.module_ref}. Must be 32 bytes of hex."
            )

        if self.schema_version not in (1, 2, 3):
            raise ValueError(
                f"Invalid schema_version: {self.schema_version}. Must be 1, 2 or 3."
            )

        if (
            not isinstance(self.max_contract_execution_energy, int)
            or self.max_contract_execution_energy < 1
        ):
            raise ValueError(
                f"Invalid max_contract_execution_energy: "
                f"{self.max_contract_execution_energy}. Must be a positive integer."
            )

        for name in ("finalization_timeout", "refresh_grace_delay", "step_retention_delay"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value < 0:
                raise ValueError(f"Invalid {name}: {value}. Must be a non-negative number.")

        if self.finalization_timeout == 0:
            raise ValueError("Invalid finalization_timeout: 0. Must be positive.")

        if not isinstance(self.micro_units, int) or self.micro_units < 1:
            raise ValueError(
                f"Invalid micro_units: {self.micro_units}. Must be a positive integer."
            )

    @property
    def node_socket_path(self) -> str:
        """Unix socket of the ledger node gateway."""
        return str(Path(self.data_dir_path) / "node.sock")

    @classmethod
    def from_file(cls, filepath: str) -> "Config":
        """Load configuration from JSON file."""
        if not filepath or not filepath.strip():
            raise ValueError("Filepath must be a non-empty string")

        try:
            config_data = json.loads(Path(filepath).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as err:
            raise ValueError(f"Failed to load config from {filepath}: {err}") from err

        overrides = {
            name: config_data[key]
            for name, key in _FILE_KEYS.items()
            if key in config_data
        }
        return cls(**overrides)

    def save_to_file(self, filepath: str) -> None:
        """Save configuration to JSON file."""
        if not filepath or not filepath.strip():
            raise ValueError("Filepath must be a non-empty string")

        try:
            file_path = Path(filepath)
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(
                json.dumps(self.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8"
            )
        except OSError as err:
            raise ValueError(f"Failed to save config to {filepath}: {err}") from err

    def update(self, **kwargs: Union[str, int, float]) -> "Config":
        """Create a copy with updated values."""
        current = asdict(self)
        current.update(kwargs)
        return Config(**current)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {_FILE_KEYS[f.name]: getattr(self, f.name) for f in fields(self)}
