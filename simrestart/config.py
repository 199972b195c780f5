"""Configuration loading and validation for simrestart using Pydantic."""

from pathlib import Path
from typing import Any, Dict, Optional, Union

import tomli
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .io.hdf5_file import OpenMode
from .io.packer import get_packer
from .parallel.process_group import ProcessGroup, get_process_group


class CheckpointConfig(BaseModel):
    """Restart file configuration."""

    model_config = ConfigDict(extra="forbid")

    filename: Path = Path("restart.h5")
    open_mode: OpenMode = OpenMode.CREATE
    root_rank: int = Field(default=0, ge=0)
    packer: str = Field(default="torch")
    resume_from: Optional[str] = Field(default=None)

    @field_validator("packer")
    @classmethod
    def validate_packer(cls, v: str) -> str:
        allowed = ["torch"]
        if v.lower() not in allowed:
            raise ValueError(f"packer must be one of {allowed}")
        return v.lower()

    @field_validator("resume_from", mode="before")
    @classmethod
    def validate_resume_from(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        if not v:
            return None
        if v.lower() != "last" and not v.isdigit():
            raise ValueError(
                f"resume_from must be 'last' or a report step number, got: {v}"
            )
        return v.lower()


class ParallelConfig(BaseModel):
    """Process group configuration."""

    model_config = ConfigDict(extra="forbid")

    backend: str = Field(default="auto")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        allowed = ["auto", "serial", "torch"]
        if v.lower() not in allowed:
            raise ValueError(f"parallel backend must be one of {allowed}")
        return v.lower()


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")

    level: str = Field(default="INFO")
    log_dir: Optional[Path] = None

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"log level must be one of {allowed}")
        return v.upper()


class Config(BaseModel):
    """Root configuration model for simrestart."""

    model_config = ConfigDict(extra="allow")

    case_name: str = "case"
    checkpoint: CheckpointConfig = Field(default_factory=CheckpointConfig)
    parallel: ParallelConfig = Field(default_factory=ParallelConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def params_listing(self) -> str:
        """Parameter listing stored in the restart file header."""
        flat = _flatten(self.model_dump(mode="json"))
        return "\n".join(f"{key}={value}" for key, value in sorted(flat.items()))


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{name}."))
        else:
            flat[name] = value
    return flat


def load_config(config_path: Union[str, Path]) -> Config:
    """Load and validate TOML configuration file.

    Args:
        config_path: Path to TOML config file

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If config file doesn't exist
        pydantic.ValidationError: If config validation fails
        ValueError: If TOML parsing fails
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    logger.info(f"Loading configuration from: {config_path}")

    try:
        with open(path, "rb") as f:
            config_dict = tomli.load(f)
    except tomli.TOMLDecodeError as e:
        raise ValueError(f"Failed to parse TOML config: {e}") from e

    config = Config(**config_dict)

    logger.info("Configuration validated successfully")
    logger.info(f"  Restart file: {config.checkpoint.filename}")
    logger.info(f"  Open mode: {config.checkpoint.open_mode.value}")
    logger.info(f"  Root rank: {config.checkpoint.root_rank}")

    return config


def open_serializer(config: Config, comm: Optional[ProcessGroup] = None):
    """Open the restart file described by ``config``.

    Args:
        config: Validated configuration
        comm: Process group; built from ``config.parallel`` when omitted

    Returns:
        HDF5Serializer for the configured file
    """
    from .checkpoint.serializer import HDF5Serializer

    if comm is None:
        comm = get_process_group(config.parallel.backend)

    return HDF5Serializer(
        config.checkpoint.filename,
        config.checkpoint.open_mode,
        comm,
        packer=get_packer(config.checkpoint.packer),
        root=config.checkpoint.root_rank,
    )


def open_restart(config: Config, comm: Optional[ProcessGroup] = None):
    """Open the configured restart file and resolve the step to resume from.

    Args:
        config: Validated configuration
        comm: Process group; built from ``config.parallel`` when omitted

    Returns:
        Tuple of (serializer, report step), the step being None when
        ``checkpoint.resume_from`` is unset

    Raises:
        ValueError: If resume_from is set with open_mode "create"
        LookupError: If the requested report step is not in the file
    """
    from .checkpoint.restart import resolve_restart_step

    resume_from = config.checkpoint.resume_from
    if resume_from is not None and config.checkpoint.open_mode == OpenMode.CREATE:
        raise ValueError(
            "checkpoint.resume_from requires open_mode 'append' or 'read', "
            "'create' truncates the restart file"
        )

    serializer = open_serializer(config, comm)
    try:
        step = resolve_restart_step(serializer, resume_from)
    except (LookupError, ValueError):
        serializer.close()
        raise
    return serializer, step
