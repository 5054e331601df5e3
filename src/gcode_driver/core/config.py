"""Configuration management for the GCode driver.

Handles configuration loading with the following precedence (highest to lowest):
1. Environment variables
2. CLI arguments
3. Config file
4. Default values
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from gcode_driver.core.logging import get_logger
from gcode_driver.protocol.registry import CommandKind, CommandRegistry

logger = get_logger()

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "gcode-driver" / "config.yaml"

CHANNEL_TYPES = ("tcp", "serial", "dry-run")

# Environment variable names
ENV_CONFIG_FILE = "GCODE_DRIVER_CONFIG"
ENV_CHANNEL_TYPE = "CHANNEL_TYPE"
ENV_CHANNEL_ADDRESS = "CHANNEL_ADDRESS"
ENV_CHANNEL_PORT = "CHANNEL_PORT"
ENV_CHANNEL_PATH = "CHANNEL_PATH"
ENV_CHANNEL_BAUD_RATE = "CHANNEL_BAUD_RATE"
ENV_CHANNEL_RESPONSE_TIMEOUT = "CHANNEL_RESPONSE_TIMEOUT"
ENV_GCODE_LOG_FILE = "GCODE_LOG_FILE"


def _get(data: dict[str, Any], key: str, default: Any = None) -> Any:
    """Read a hyphenated key, falling back to its underscore spelling."""
    if key in data:
        return data[key]
    return data.get(key.replace("-", "_"), default)


@dataclass
class ChannelConfig:
    """Transport settings."""

    type: str = "tcp"
    address: str = "localhost"
    port: int = 23
    path: str | None = None
    baud_rate: int = 115200
    connect_timeout: float = 3000.0  # ms
    connect_wait_time: float = 0.0  # ms
    response_timeout: float = 5000.0  # ms
    keep_alive: bool = True


@dataclass
class CommandConfig:
    """A command template entry."""

    kind: str
    template: str
    subject: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CommandConfig":
        if "kind" not in data or "template" not in data:
            raise ValueError(f"Command entry needs 'kind' and 'template': {data}")
        CommandKind.parse(data["kind"])
        subject = data.get("subject")
        return cls(
            kind=str(data["kind"]),
            template=str(data["template"]),
            subject=None if subject is None else str(subject),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"kind": self.kind, "template": self.template}
        if self.subject is not None:
            result["subject"] = self.subject
        return result


@dataclass
class PatternConfig:
    """A response pattern entry."""

    kind: str
    pattern: str
    subject: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PatternConfig":
        if "kind" not in data or "pattern" not in data:
            raise ValueError(f"Pattern entry needs 'kind' and 'pattern': {data}")
        CommandKind.parse(data["kind"])
        subject = data.get("subject")
        return cls(
            kind=str(data["kind"]),
            pattern=str(data["pattern"]),
            subject=None if subject is None else str(subject),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"kind": self.kind, "pattern": self.pattern}
        if self.subject is not None:
            result["subject"] = self.subject
        return result


@dataclass
class SimulatorConfig:
    """Settings for the command/response simulator."""

    address: str = "127.0.0.1"
    port: int = 2323
    responses: dict[str, str] = field(default_factory=dict)
    default_response: str | None = "ok"


@dataclass
class Config:
    """Main configuration container."""

    channel: ChannelConfig = field(default_factory=ChannelConfig)
    use_defaults: bool = True
    error_pattern: str | None = None
    commands: list[CommandConfig] = field(default_factory=list)
    patterns: list[PatternConfig] = field(default_factory=list)
    gcode_log_file: str | None = None
    queue_limit: int = 50
    simulator: SimulatorConfig = field(default_factory=SimulatorConfig)

    @classmethod
    def load(
        cls,
        config_file: Path | str | None = None,
        cli_args: dict[str, Any] | None = None,
        skip_channel_validation: bool = False,
    ) -> "Config":
        """Load configuration from all sources with proper precedence.

        Args:
            config_file: Path to configuration file. If None, uses default or env var.
            cli_args: Dictionary of CLI arguments.
            skip_channel_validation: If True, skip validation of channel settings.

        Returns:
            Loaded and merged configuration.

        Raises:
            ValueError: If the channel settings are inconsistent (unless
                skip_channel_validation is True).
        """
        config = cls()

        if config_file is None:
            config_file = os.environ.get(ENV_CONFIG_FILE, str(DEFAULT_CONFIG_PATH))

        config_path = Path(config_file).expanduser()

        if config_path.exists():
            config = cls._load_from_file(config_path)

        if cli_args:
            config = cls._apply_cli_args(config, cli_args)

        config = cls._apply_env_vars(config)

        if not skip_channel_validation:
            config._validate()

        return config

    @classmethod
    def _load_from_file(cls, path: Path) -> "Config":
        """Load configuration from YAML file.

        Args:
            path: Path to the YAML config file.

        Returns:
            Configuration loaded from file.
        """
        config = cls()

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning(f"Failed to load config file {path}: {e}")
            return config

        channel_data = data.get("channel") or {}
        if channel_data:
            channel = config.channel
            channel.type = str(_get(channel_data, "type", channel.type))
            channel.address = str(_get(channel_data, "address", channel.address))
            channel.port = int(_get(channel_data, "port", channel.port))
            path_value = _get(channel_data, "path")
            if path_value is not None:
                channel.path = str(path_value)
            channel.baud_rate = int(_get(channel_data, "baud-rate", channel.baud_rate))
            channel.connect_timeout = float(
                _get(channel_data, "connect-timeout", channel.connect_timeout)
            )
            channel.connect_wait_time = float(
                _get(channel_data, "connect-wait-time", channel.connect_wait_time)
            )
            channel.response_timeout = float(
                _get(channel_data, "response-timeout", channel.response_timeout)
            )
            channel.keep_alive = bool(_get(channel_data, "keep-alive", channel.keep_alive))

        config.use_defaults = bool(_get(data, "use-defaults", config.use_defaults))

        error_pattern = _get(data, "error-pattern")
        if error_pattern is not None:
            config.error_pattern = str(error_pattern)

        for entry in data.get("commands") or []:
            try:
                config.commands.append(CommandConfig.from_dict(entry))
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping invalid command in config file: {e}")

        for entry in data.get("patterns") or []:
            try:
                config.patterns.append(PatternConfig.from_dict(entry))
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping invalid pattern in config file: {e}")

        log_file = _get(data, "gcode-log-file")
        if log_file is not None:
            config.gcode_log_file = str(log_file)

        config.queue_limit = int(_get(data, "queue-limit", config.queue_limit))

        simulator_data = data.get("simulator") or {}
        if simulator_data:
            simulator = config.simulator
            simulator.address = str(_get(simulator_data, "address", simulator.address))
            simulator.port = int(_get(simulator_data, "port", simulator.port))
            simulator.responses = {
                str(command): str(response)
                for command, response in (simulator_data.get("responses") or {}).items()
            }
            if "default-response" in simulator_data or "default_response" in simulator_data:
                default = _get(simulator_data, "default-response")
                simulator.default_response = None if default is None else str(default)

        return config

    @classmethod
    def _apply_cli_args(cls, config: "Config", cli_args: dict[str, Any]) -> "Config":
        """Apply CLI arguments to configuration.

        Args:
            config: Existing configuration to modify.
            cli_args: Dictionary of CLI arguments.

        Returns:
            Modified configuration.
        """
        if cli_args.get("channel_type") is not None:
            config.channel.type = str(cli_args["channel_type"])

        if cli_args.get("address") is not None:
            config.channel.address = str(cli_args["address"])

        if cli_args.get("port") is not None:
            config.channel.port = int(cli_args["port"])

        if cli_args.get("dev_path") is not None:
            config.channel.path = str(cli_args["dev_path"])

        if cli_args.get("baud_rate") is not None:
            config.channel.baud_rate = int(cli_args["baud_rate"])

        if cli_args.get("response_timeout") is not None:
            config.channel.response_timeout = float(cli_args["response_timeout"])

        if cli_args.get("gcode_log_file") is not None:
            config.gcode_log_file = str(cli_args["gcode_log_file"])

        return config

    @classmethod
    def _apply_env_vars(cls, config: "Config") -> "Config":
        """Apply environment variables to configuration.

        Args:
            config: Existing configuration to modify.

        Returns:
            Modified configuration.
        """
        if ENV_CHANNEL_TYPE in os.environ:
            config.channel.type = os.environ[ENV_CHANNEL_TYPE]

        if ENV_CHANNEL_ADDRESS in os.environ:
            config.channel.address = os.environ[ENV_CHANNEL_ADDRESS]

        if ENV_CHANNEL_PORT in os.environ:
            config.channel.port = int(os.environ[ENV_CHANNEL_PORT])

        if ENV_CHANNEL_PATH in os.environ:
            config.channel.path = os.environ[ENV_CHANNEL_PATH]

        if ENV_CHANNEL_BAUD_RATE in os.environ:
            config.channel.baud_rate = int(os.environ[ENV_CHANNEL_BAUD_RATE])

        if ENV_CHANNEL_RESPONSE_TIMEOUT in os.environ:
            config.channel.response_timeout = float(os.environ[ENV_CHANNEL_RESPONSE_TIMEOUT])

        if ENV_GCODE_LOG_FILE in os.environ:
            config.gcode_log_file = os.environ[ENV_GCODE_LOG_FILE]

        return config

    def _validate(self) -> None:
        """Validate channel settings.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        if self.channel.type not in CHANNEL_TYPES:
            raise ValueError(
                f"Unknown channel type '{self.channel.type}'. "
                f"Valid types: {', '.join(CHANNEL_TYPES)}"
            )

        if self.channel.type == "serial" and not (self.channel.path or "").strip():
            raise ValueError(
                "A device path is required for a serial channel. Please provide one via:\n"
                f"    - Environment variable: {ENV_CHANNEL_PATH}\n"
                "    - CLI argument: --dev\n"
                "    - Config file: channel.path"
            )

        if self.channel.type == "tcp" and not self.channel.address.strip():
            raise ValueError("An address is required for a TCP channel")

    def build_registry(self) -> CommandRegistry:
        """
        Create a command registry from the configured entries.

        Entries are applied on top of the default command set when
        use_defaults is set.

        Raises:
            InvalidPatternError: If a configured pattern does not compile.
        """
        registry = CommandRegistry.with_defaults() if self.use_defaults else CommandRegistry()

        for command in self.commands:
            registry.set_command(command.subject, command.kind, command.template)

        for pattern in self.patterns:
            registry.set_pattern(pattern.subject, pattern.kind, pattern.pattern)

        if self.error_pattern:
            registry.set_error_pattern(self.error_pattern)

        return registry

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary.

        Returns:
            Dictionary representation of configuration.
        """
        result: dict[str, Any] = {
            "channel": {
                "type": self.channel.type,
                "address": self.channel.address,
                "port": self.channel.port,
                "path": self.channel.path,
                "baud_rate": self.channel.baud_rate,
                "connect_timeout": self.channel.connect_timeout,
                "connect_wait_time": self.channel.connect_wait_time,
                "response_timeout": self.channel.response_timeout,
                "keep_alive": self.channel.keep_alive,
            },
            "use_defaults": self.use_defaults,
            "queue_limit": self.queue_limit,
        }
        if self.error_pattern is not None:
            result["error_pattern"] = self.error_pattern
        if self.commands:
            result["commands"] = [c.to_dict() for c in self.commands]
        if self.patterns:
            result["patterns"] = [p.to_dict() for p in self.patterns]
        if self.gcode_log_file is not None:
            result["gcode_log_file"] = self.gcode_log_file
        return result

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file.

        Args:
            path: Path to save to. If None, uses default config path.
        """
        if path is None:
            path = DEFAULT_CONFIG_PATH

        save_path = Path(path).expanduser()
        save_path.parent.mkdir(parents=True, exist_ok=True)

        # Convert to YAML-friendly format with hyphenated keys
        channel_data: dict[str, Any] = {
            "type": self.channel.type,
            "address": self.channel.address,
            "port": self.channel.port,
            "baud-rate": self.channel.baud_rate,
            "connect-timeout": self.channel.connect_timeout,
            "connect-wait-time": self.channel.connect_wait_time,
            "response-timeout": self.channel.response_timeout,
            "keep-alive": self.channel.keep_alive,
        }

        if self.channel.path is not None:
            channel_data["path"] = self.channel.path

        data: dict[str, Any] = {
            "channel": channel_data,
            "use-defaults": self.use_defaults,
            "queue-limit": self.queue_limit,
        }

        if self.error_pattern is not None:
            data["error-pattern"] = self.error_pattern

        if self.commands:
            data["commands"] = [c.to_dict() for c in self.commands]

        if self.patterns:
            data["patterns"] = [p.to_dict() for p in self.patterns]

        if self.gcode_log_file is not None:
            data["gcode-log-file"] = self.gcode_log_file

        if self.simulator.responses:
            data["simulator"] = {
                "address": self.simulator.address,
                "port": self.simulator.port,
                "responses": dict(self.simulator.responses),
                "default-response": self.simulator.default_response,
            }

        with open(save_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False)
