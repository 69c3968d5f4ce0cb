"""
Configuration - Bridge configuration management
"""

import os
import json
import math
import logging
import yaml
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = str(Path.home() / ".mcp-logs")
CONFIG_FILE_NAME = "config.yaml"


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    """Read a non-negative number from the environment, falling back on junk."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number, using %s", name, raw, default)
        return default
    if math.isnan(value) or value < minimum:
        logger.warning("Ignoring %s=%r: must be >= %s, using %s", name, raw, minimum, default)
        return default
    return value


def _section(data: dict, name: str) -> dict:
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")
    return section


@dataclass
class BridgeConfig:
    """
    Configuration for the terminal bridge.

    Can be loaded from:
    - YAML file (<log_dir>/config.yaml)
    - JSON file
    - Environment variables (AI_*)
    - Programmatic defaults
    """

    # Storage settings
    log_dir: str = DEFAULT_LOG_DIR

    # Retention settings
    keep_days: float = 1.0
    orphan_after_hours: float = 24.0

    # Read settings
    view_lines: int = 100
    crash_lines: int = 100
    fix_lines: int = 200
    max_files: int = 10

    # Triage settings
    max_issues: int = 10

    def __post_init__(self):
        if self.keep_days < 0:
            raise ValueError(f"keep_days must be >= 0, got {self.keep_days}")
        if self.orphan_after_hours <= 0:
            raise ValueError(f"orphan_after_hours must be > 0, got {self.orphan_after_hours}")

    @classmethod
    def from_file(cls, path: str) -> "BridgeConfig":
        """Load configuration from YAML or JSON file."""
        path = Path(path)

        if not path.exists():
            return cls()

        content = path.read_text()

        if path.suffix in ('.yaml', '.yml'):
            data = yaml.safe_load(content) or {}
        elif path.suffix == '.json':
            data = json.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "BridgeConfig":
        """
        Create config from dictionary.

        An empty section (``retention:`` with nothing under it) counts as
        absent.

        Raises:
            ValueError: if the document or a section is not a mapping
        """
        if not isinstance(data, dict):
            raise ValueError(f"Config must be a mapping, got {type(data).__name__}")

        # Flatten nested structure
        flat = {}

        storage = _section(data, 'storage')
        if storage:
            flat['log_dir'] = os.path.expanduser(storage.get('log_dir', DEFAULT_LOG_DIR))

        retention = _section(data, 'retention')
        if retention:
            flat['keep_days'] = float(retention.get('keep_days', 1))
            flat['orphan_after_hours'] = float(retention.get('orphan_after_hours', 24))

        read = _section(data, 'read')
        if read:
            flat['view_lines'] = int(read.get('view_lines', 100))
            flat['crash_lines'] = int(read.get('crash_lines', 100))
            flat['fix_lines'] = int(read.get('fix_lines', 200))
            flat['max_files'] = int(read.get('max_files', 10))

        triage = _section(data, 'triage')
        if triage:
            flat['max_issues'] = int(triage.get('max_issues', 10))

        return cls(**flat)

    @classmethod
    def from_env(cls, base: Optional["BridgeConfig"] = None) -> "BridgeConfig":
        """Load configuration from environment variables on top of ``base``."""
        base = base or cls()
        return cls(
            log_dir=os.path.expanduser(os.getenv('AI_LOG_DIR', base.log_dir)),
            keep_days=_env_float('AI_KEEP_LOGS', base.keep_days),
            orphan_after_hours=_env_float('AI_ORPHAN_HOURS', base.orphan_after_hours, minimum=0.001),
            view_lines=base.view_lines,
            crash_lines=base.crash_lines,
            fix_lines=base.fix_lines,
            max_files=base.max_files,
            max_issues=base.max_issues,
        )

    @classmethod
    def load(cls) -> "BridgeConfig":
        """
        Resolve the effective configuration.

        The config file lives inside the log directory, so AI_LOG_DIR is
        consulted first to find it. Environment variables win over the file.
        A broken config file is reported and ignored.
        """
        log_dir = os.path.expanduser(os.getenv('AI_LOG_DIR', DEFAULT_LOG_DIR))
        config_path = Path(log_dir) / CONFIG_FILE_NAME

        base = None
        if config_path.exists():
            try:
                base = cls.from_file(str(config_path))
            except (OSError, ValueError, TypeError, yaml.YAMLError) as e:
                logger.warning("Ignoring unreadable config %s: %s", config_path, e)

        return cls.from_env(base)

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        return {
            'storage': {
                'log_dir': self.log_dir,
            },
            'retention': {
                'keep_days': self.keep_days,
                'orphan_after_hours': self.orphan_after_hours,
            },
            'read': {
                'view_lines': self.view_lines,
                'crash_lines': self.crash_lines,
                'fix_lines': self.fix_lines,
                'max_files': self.max_files,
            },
            'triage': {
                'max_issues': self.max_issues,
            },
        }

    def save(self, path: str):
        """Save configuration to file."""
        path = Path(path)
        data = self.to_dict()

        if path.suffix in ('.yaml', '.yml'):
            content = yaml.dump(data, default_flow_style=False)
        else:
            content = json.dumps(data, indent=2)

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)

    @property
    def config_path(self) -> Path:
        """Get full path to the config file."""
        return Path(self.log_dir) / CONFIG_FILE_NAME


# Default config file template
DEFAULT_CONFIG_YAML = """# AI Live Terminal Bridge Configuration

storage:
  log_dir: "~/.mcp-logs"

retention:
  # Days to keep finished session logs. 0 deletes a log as soon as its
  # command exits. Overridden by AI_KEEP_LOGS.
  keep_days: 1
  # Running sessions older than this are treated as orphaned.
  orphan_after_hours: 24

read:
  view_lines: 100
  crash_lines: 100
  fix_lines: 200
  max_files: 10

triage:
  max_issues: 10
"""
