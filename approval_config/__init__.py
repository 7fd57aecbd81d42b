"""
approval_config -- single public entrypoint for reviewer-chain configuration.

Responsibility:
    Provides the ONLY way to obtain approval configuration at runtime
    through ``get_active_config()``.  Returns a frozen
    ``ProjectApprovalConfig`` with the project's overrides already merged
    onto the defaults.  YAML loading is internal tooling.

Architecture position:
    Configuration -- sits above ``approval_kernel`` and below
    ``approval_services``.  The kernel MUST NEVER import from
    ``approval_config``; ``bridges`` translates configuration into kernel
    inputs (``WorkflowPolicy``, ``StepAssignment``).

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Validation before use: a chain that is empty, has a non-positive
      weight, or a quorum above its total weight is never returned.
    - Deterministic checksum: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- parse or validation failures.

Audit relevance:
    Every successful call emits an ``APPROVAL_CONFIG_TRACE`` log entry with
    the config id, version, checksum and project.  Workflows submitted
    under a configuration can be tied back to the exact file that shaped
    their reviewer chain.
"""

from __future__ import annotations

import logging
from pathlib import Path
from uuid import UUID

from approval_config.loader import (
    load_yaml_file,
    parse_configuration_set,
    resolve_project_config,
)
from approval_config.schema import ProjectApprovalConfig
from approval_config.validator import validate_project_config

_logger = logging.getLogger("approval_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
_CONFIG_FILENAME = "default.yaml"


def get_active_config(
    project_id: UUID | None,
    config_dir: Path | None = None,
) -> ProjectApprovalConfig:
    """The ONLY public configuration entrypoint.

    Guarantees:
        - The returned config has passed validation.
        - An ``APPROVAL_CONFIG_TRACE`` log entry is emitted on every
          successful call.

    Non-goals:
        - No caching across calls; the file is re-read each time, so an
          edited configuration applies to the next submission.

    Args:
        project_id: Project whose overrides apply, or None for defaults.
        config_dir: Override path to the configuration directory.
            Defaults to approval_config/sets/.

    Raises:
        FileNotFoundError: If the configuration file is missing.
        ValueError: If configuration validation fails.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    config_set = parse_configuration_set(load_yaml_file(sets_dir / _CONFIG_FILENAME))
    config = resolve_project_config(config_set, project_id)

    validation = validate_project_config(config)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )

    _logger.info(
        "APPROVAL_CONFIG_TRACE",
        extra={
            "trace_type": "APPROVAL_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.config_version,
            "checksum": config.checksum,
            "project_id": str(project_id) if project_id is not None else None,
            "chain_length": len(config.approval_chain),
            "auto_start": config.auto_start,
        },
    )
    return config


__all__ = ["ProjectApprovalConfig", "get_active_config"]
