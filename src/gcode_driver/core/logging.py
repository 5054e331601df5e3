"""
Logging for the GCode driver.

Library modules log through get_logger(). Two streams exist besides the usual
levels:

- VERBOSE (level 9) carries the raw bytes each channel writes and receives,
  below the DEBUG messages that describe exchanges and task admission.
- The "gcode" logger records each command line as it is written to the channel
  and each reply line as it is framed, in one file when a log file is set.
  It never propagates, so the console shows exchanges only at DEBUG.

The CLI calls setup_logging() once; library users may configure logging
themselves and only call setup_file_logger() for the traffic file.
"""

import logging
from pathlib import Path
from typing import Any

# Define custom VERBOSE level (9 is between DEBUG (10) and NOTSET (0))
VERBOSE = 9
logging.addLevelName(VERBOSE, "VERBOSE")

GCODE_LOGGER_ID = "gcode"

DATE_FMT = "%Y-%m-%d %H:%M:%S"
LOG_FMT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
COMM_LOG_FMT = "%(asctime)s - %(source)s: %(message)s"


class VerboseLogger(logging.Logger):
    def verbose(self: logging.Logger, message: str, *args: Any, **kwargs: Any) -> None:
        """
        Log a message with severity 'VERBOSE'.

        Used for the raw bytes of channel reads and writes, which are too
        noisy for DEBUG on a machine that streams status lines.

        Args:
            self: The logger instance.
            message: The log message.
            *args: Arguments for message formatting.
            **kwargs: Additional keyword arguments passed to log().
        """
        if self.isEnabledFor(VERBOSE):
            self._log(VERBOSE, message, args, **kwargs)


def setup_logging(
    verbosity_level: int = 0,
    quiet: bool = False,
    gcode_log_file: str | None = None,
) -> None:
    """
    Configure logging based on verbosity settings.

    Args:
        verbosity_level: Verbosity counter from CLI (e.g., from Click's count=True).
            - 0: INFO level (default)
            - 1: DEBUG level (-v flag)
            - 2+: VERBOSE level (-vv or more flags)
        quiet: If True, set log level to ERROR (takes precedence over verbosity_level).
        gcode_log_file: Optional path of the traffic file. Every command line
            sent and every reply line received is appended to it as
            "Sent: ..." or "Recv: ...". Without a path the traffic logger
            gets a NullHandler.
    """
    if quiet:
        level = logging.ERROR
    elif verbosity_level >= 2:
        level = VERBOSE
    elif verbosity_level == 1:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.setLoggerClass(VerboseLogger)

    logging.basicConfig(level=level, format=LOG_FMT, datefmt=DATE_FMT)

    setup_file_logger(gcode_log_file, GCODE_LOGGER_ID)


def setup_file_logger(log_file: str | None, logger_id: str = GCODE_LOGGER_ID) -> None:
    """Attach the traffic file to a logger once; later calls keep the first file."""
    file_logger = logging.getLogger(logger_id)

    # Already configured
    if any(isinstance(h, logging.FileHandler) for h in file_logger.handlers):
        return

    try:
        fh: logging.Handler = logging.NullHandler()
        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            fh = logging.FileHandler(str(log_path), encoding="utf-8", mode="a")
            fh.setFormatter(logging.Formatter(COMM_LOG_FMT, datefmt=DATE_FMT))
            fh.setLevel(logging.INFO)

        file_logger.addHandler(fh)
        file_logger.setLevel(logging.INFO)

        # Do not propagate to root logger - only write to file
        file_logger.propagate = False

    except OSError as e:
        logging.getLogger(__name__).error(
            f"Failed to set up log file '{log_file}' for logger '{logger_id}': {e}"
        )


def get_logger(name: str | None = None) -> VerboseLogger:
    """
    Get a logger instance, ensuring it is a VerboseLogger.

    This function is a wrapper around logging.getLogger that ensures the
    returned logger is an instance of VerboseLogger, even if it was
    created before setup_logging() was called.

    Args:
        name: The name of the logger to get. Defaults to the calling module.

    Returns:
        An instance of VerboseLogger.
    """
    if name is None:
        import inspect

        frame = inspect.stack()[1]
        module = inspect.getmodule(frame[0])
        name = module.__name__ if module else "__main__"

    logger = logging.getLogger(name)

    # Loggers created before setLoggerClass() are plain Loggers
    if not isinstance(logger, VerboseLogger):
        logger.__class__ = VerboseLogger

    return logger  # type: ignore


def get_gcode_logger() -> logging.Logger:
    return logging.getLogger(GCODE_LOGGER_ID)


def log_gcode_communication(content: str, sent: bool = True) -> None:
    """Record one line of channel traffic, tagged with its direction."""
    get_gcode_logger().info(content, extra={"source": "Sent" if sent else "Recv"})


def log_gcode_sent(command: str) -> None:
    log_gcode_communication(command, sent=True)


def log_gcode_recv(line: str) -> None:
    log_gcode_communication(line, sent=False)
