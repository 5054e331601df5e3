"""
Command Template Registry - Map hardware capabilities to command text.

Each (subject, command kind) pair may carry one command template. Templates
registered for the GLOBAL subject act as defaults: resolving a command for a
specific subject returns its own template if there is one and the global
template otherwise. Read-capable kinds additionally carry a response pattern,
resolved the same way.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from gcode_driver.core.logging import get_logger
from gcode_driver.core.utils import (
    MissingCommandError,
    MissingPatternError,
    RegistryLockedError,
)
from gcode_driver.protocol.matcher import ResponsePattern

logger = get_logger()


class CommandKind(Enum):
    """The semantic purpose of a command."""

    CONNECT = "connect"
    ENABLE = "enable"
    DISABLE = "disable"
    HOME = "home"
    MOVE_TO = "move-to"
    MOVE_TO_COMPLETE = "move-to-complete"
    ACTUATE_BOOLEAN = "actuate-boolean"
    ACTUATE_DOUBLE = "actuate-double"
    ACTUATOR_READ = "actuator-read"

    @property
    def is_read(self) -> bool:
        """Whether replies to this kind are parsed with a response pattern."""
        return self is CommandKind.ACTUATOR_READ

    @classmethod
    def parse(cls, value: "CommandKind | str") -> "CommandKind":
        """
        Convert a kind name from configuration to a CommandKind.

        Accepts the enum value ("actuator-read"), the member name
        ("ACTUATOR_READ") or an underscore variant ("actuator_read").
        """
        if isinstance(value, CommandKind):
            return value

        normalized = str(value).strip().lower().replace("_", "-")
        for kind in cls:
            if kind.value == normalized:
                return kind

        valid = ", ".join(kind.value for kind in cls)
        raise ValueError(f"Unknown command kind '{value}'. Valid kinds: {valid}")


@dataclass(frozen=True)
class Subject:
    """
    The unit a command acts on: an axis, an actuator, or the whole machine.

    Attributes:
        name: Stable name of the unit, or None for the machine as a whole.
    """

    name: str | None = None

    @property
    def is_global(self) -> bool:
        return self.name is None

    @classmethod
    def of(cls, subject: "Subject | str | None") -> "Subject":
        """Coerce a name (or None for global) to a Subject."""
        if isinstance(subject, Subject):
            return subject
        return cls(subject)

    def __str__(self) -> str:
        return "global" if self.name is None else self.name


GLOBAL = Subject()

# {Name} or {Name:format}
PLACEHOLDER_RE = re.compile(r"\{(\w+)(?::([^}]*))?\}")


def fill_template(template: str, variables: dict[str, Any]) -> str:
    """
    Substitute placeholders in a command template.

    ``{Name}`` is replaced by the variable's value. ``{Name:fmt}`` formats the
    value with the printf-style ``fmt`` (e.g. ``%.4f``); a format without a
    conversion is emitted literally, so ``{True:M8}`` yields ``M8`` only when
    the ``True`` variable is set. Placeholders whose variable is missing or
    None are removed.

    Args:
        template: The configured command template.
        variables: Values available to the template.

    Returns:
        The filled command text.
    """

    def substitute(m: re.Match[str]) -> str:
        name, fmt = m.group(1), m.group(2)
        value = variables.get(name)
        if value is None:
            return ""
        if fmt is None:
            return str(value)
        if "%" not in fmt:
            return fmt
        return fmt % value

    return PLACEHOLDER_RE.sub(substitute, template)


@dataclass(frozen=True)
class CommandTemplate:
    """A command template as stored in the registry."""

    subject: Subject
    kind: CommandKind
    text: str

    def fill(self, **variables: Any) -> str:
        return fill_template(self.text, variables)


DEFAULT_COMMANDS: dict[CommandKind, str] = {
    CommandKind.CONNECT: (
        "G21 ; Set millimeters mode\n"
        "G90 ; Set absolute positioning mode\n"
        "M82 ; Set absolute mode for extruder"
    ),
    CommandKind.HOME: "G28 ; Home all axes",
    CommandKind.MOVE_TO: (
        "G0 {X:X%.4f} {Y:Y%.4f} {Z:Z%.4f} {Rotation:E%.4f} {FeedRate:F%.0f} "
        "; Send standard Gcode move"
    ),
    CommandKind.MOVE_TO_COMPLETE: "M400 ; Wait for moves to complete before returning",
}


class CommandRegistry:
    """
    Stores command templates and response patterns.

    The registry can be frozen while the driver is enabled; any attempt to
    change it then raises RegistryLockedError.
    """

    def __init__(self):
        self._commands: dict[tuple[Subject, CommandKind], CommandTemplate] = {}
        self._patterns: dict[tuple[Subject, CommandKind], ResponsePattern] = {}
        self._error_pattern: ResponsePattern | None = None
        self._frozen = False

    @classmethod
    def with_defaults(cls) -> "CommandRegistry":
        """Create a registry holding the default global command set."""
        registry = cls()
        for kind, text in DEFAULT_COMMANDS.items():
            registry.set_command(GLOBAL, kind, text)
        return registry

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def unfreeze(self) -> None:
        self._frozen = False

    def _check_writable(self) -> None:
        if self._frozen:
            raise RegistryLockedError(
                "Commands and patterns can only be changed while the driver is disabled"
            )

    def set_command(
        self,
        subject: Subject | str | None,
        kind: CommandKind | str,
        template: str | None,
    ) -> None:
        """
        Store or overwrite the command template for a subject and kind.

        Passing None (or an empty template) removes the entry.
        """
        self._check_writable()
        key = (Subject.of(subject), CommandKind.parse(kind))

        if not template:
            self._commands.pop(key, None)
            return

        self._commands[key] = CommandTemplate(subject=key[0], kind=key[1], text=template)
        logger.debug(f"Set {key[1].value} command for {key[0]}: {template!r}")

    def set_pattern(
        self,
        subject: Subject | str | None,
        kind: CommandKind | str,
        pattern: ResponsePattern | str | None,
    ) -> None:
        """
        Store or overwrite the response pattern for a read-capable kind.

        Pattern text is compiled immediately.

        Raises:
            InvalidPatternError: If the pattern text does not compile.
            ValueError: If the kind does not take a response pattern.
        """
        self._check_writable()
        key = (Subject.of(subject), CommandKind.parse(kind))

        if not key[1].is_read:
            raise ValueError(f"Command kind '{key[1].value}' does not take a response pattern")

        if not pattern:
            self._patterns.pop(key, None)
            return

        if isinstance(pattern, str):
            pattern = ResponsePattern(pattern)

        self._patterns[key] = pattern
        logger.debug(f"Set {key[1].value} pattern for {key[0]}: {pattern.text!r}")

    def set_error_pattern(self, pattern: ResponsePattern | str | None) -> None:
        """Set the pattern that marks a reply line as a command error."""
        self._check_writable()
        if isinstance(pattern, str) and pattern:
            pattern = ResponsePattern(pattern)
        self._error_pattern = pattern or None

    @property
    def error_pattern(self) -> ResponsePattern | None:
        return self._error_pattern

    def remove_command(self, subject: Subject | str | None, kind: CommandKind | str) -> None:
        self.set_command(subject, kind, None)

    def remove_pattern(self, subject: Subject | str | None, kind: CommandKind | str) -> None:
        self.set_pattern(subject, kind, None)

    def _lookup(self, table: dict, subject: Subject, kind: CommandKind):
        entry = table.get((subject, kind))
        if entry is None and not subject.is_global:
            entry = table.get((GLOBAL, kind))
        return entry

    def resolve_command(
        self, subject: Subject | str | None, kind: CommandKind | str
    ) -> CommandTemplate:
        """
        Return the most specific template for a subject and kind.

        Raises:
            MissingCommandError: If neither a subject nor a global template exists.
        """
        subject, kind = Subject.of(subject), CommandKind.parse(kind)
        template = self._lookup(self._commands, subject, kind)
        if template is None:
            raise MissingCommandError(subject, kind)
        return template

    def resolve_pattern(
        self, subject: Subject | str | None, kind: CommandKind | str
    ) -> ResponsePattern:
        """
        Return the most specific response pattern for a subject and kind.

        Raises:
            MissingPatternError: If neither a subject nor a global pattern exists.
        """
        subject, kind = Subject.of(subject), CommandKind.parse(kind)
        pattern = self._lookup(self._patterns, subject, kind)
        if pattern is None:
            raise MissingPatternError(subject, kind)
        return pattern

    def has_command(self, subject: Subject | str | None, kind: CommandKind | str) -> bool:
        entry = self._lookup(self._commands, Subject.of(subject), CommandKind.parse(kind))
        return entry is not None

    def __len__(self) -> int:
        return len(self._commands)
