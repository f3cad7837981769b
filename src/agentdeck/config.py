"""User configuration persisted as JSON under the XDG config directory."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import List, Optional

from .errors import ConfigError


APP_DIR_NAME = "agentdeck"
CONFIG_FILE_NAME = "config.json"
DANGEROUS_FLAG = "--dangerously-skip-permissions"


def config_dir() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / APP_DIR_NAME


def default_config_path() -> Path:
    return config_dir() / CONFIG_FILE_NAME


@dataclass
class DeckConfig:
    """Settings for the dashboard and the sessions it spawns."""

    command: List[str] = field(default_factory=lambda: ["claude"])
    dangerous_mode: bool = True
    scrollback_lines: int = 10000
    max_reads_per_pump: int = 64
    frame_interval: float = 1 / 30
    default_rows: int = 24
    default_cols: int = 80

    def build_command(self, resume_id: Optional[str] = None) -> List[str]:
        """Command line for a new assistant session, optionally resuming one."""
        command = list(self.command)
        if self.dangerous_mode and DANGEROUS_FLAG not in command:
            command.append(DANGEROUS_FLAG)
        if resume_id:
            command.extend(["--resume", resume_id])
        return command

    def validate(self) -> None:
        """Clamp numeric settings into usable ranges."""
        self.scrollback_lines = max(0, int(self.scrollback_lines))
        self.max_reads_per_pump = max(1, int(self.max_reads_per_pump))
        self.frame_interval = min(max(float(self.frame_interval), 1 / 240), 1.0)
        self.default_rows = max(1, int(self.default_rows))
        self.default_cols = max(1, int(self.default_cols))
        if not self.command:
            self.command = ["claude"]

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "DeckConfig":
        """Read the config file, returning defaults when it does not exist.

        Unknown keys are ignored so older builds can read newer files.
        """
        path = Path(path) if path is not None else default_config_path()
        if not path.exists():
            return cls()
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object")

        known = {f.name for f in fields(cls)}
        config = cls(**{key: value for key, value in raw.items() if key in known})
        if isinstance(config.command, str):
            config.command = config.command.split()
        try:
            config.validate()
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid value in config file {path}: {exc}") from exc
        return config

    def save(self, path: Optional[Path] = None) -> Path:
        """Write the config as pretty JSON, creating parent directories."""
        path = Path(path) if path is not None else default_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(asdict(self), indent=2) + "\n", encoding="utf-8")
        return path
