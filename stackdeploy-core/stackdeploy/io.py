"""
User facing messages.

Components never print on their own. They receive an ``IoHost`` and send it ``IoMessage`` objects, the host
decides how (and whether) to render them. ``CliIoHost`` renders to the terminal, ``RecordingIoHost`` keeps
the messages in memory.
"""

import logging
import sys
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from rich.console import Console

LOG = logging.getLogger(__name__)


class IoMessageLevel(str, Enum):
    ERROR = "error"
    WARN = "warn"
    INFO = "info"
    DEBUG = "debug"
    TRACE = "trace"

    @property
    def priority(self) -> int:
        return _LEVEL_PRIORITY[self]


_LEVEL_PRIORITY = {
    IoMessageLevel.ERROR: 0,
    IoMessageLevel.WARN: 1,
    IoMessageLevel.INFO: 2,
    IoMessageLevel.DEBUG: 3,
    IoMessageLevel.TRACE: 4,
}

_LEVEL_STYLES = {
    IoMessageLevel.ERROR: "red",
    IoMessageLevel.WARN: "yellow",
    IoMessageLevel.INFO: None,
    IoMessageLevel.DEBUG: "bright_black",
    IoMessageLevel.TRACE: "bright_black",
}

_PYTHON_LOG_LEVELS = {
    IoMessageLevel.ERROR: logging.ERROR,
    IoMessageLevel.WARN: logging.WARNING,
    IoMessageLevel.INFO: logging.INFO,
    IoMessageLevel.DEBUG: logging.DEBUG,
    IoMessageLevel.TRACE: 5,
}


class IoAction(str, Enum):
    DEPLOY = "deploy"
    DESTROY = "destroy"


@dataclass
class IoMessage:
    level: IoMessageLevel
    message: str
    action: IoAction = IoAction.DEPLOY
    # a stable identifier of the kind of message, e.g. "SD_DEPLOY_SKIPPED"
    code: Optional[str] = None
    time: datetime = field(default_factory=datetime.now)
    # write to stdout even if the host would use stderr
    force_stdout: bool = False


class IoHost(ABC):
    """Receives every user facing message emitted while deploying or destroying a stack."""

    @abstractmethod
    def notify(self, msg: IoMessage) -> None:
        raise NotImplementedError

    def error(self, message: str, action: IoAction = IoAction.DEPLOY, code: str = None) -> None:
        self.notify(IoMessage(IoMessageLevel.ERROR, message, action=action, code=code))

    def warn(self, message: str, action: IoAction = IoAction.DEPLOY, code: str = None) -> None:
        self.notify(IoMessage(IoMessageLevel.WARN, message, action=action, code=code))

    def info(
        self,
        message: str,
        action: IoAction = IoAction.DEPLOY,
        code: str = None,
        force_stdout: bool = False,
    ) -> None:
        self.notify(
            IoMessage(
                IoMessageLevel.INFO, message, action=action, code=code, force_stdout=force_stdout
            )
        )

    def debug(self, message: str, action: IoAction = IoAction.DEPLOY, code: str = None) -> None:
        self.notify(IoMessage(IoMessageLevel.DEBUG, message, action=action, code=code))

    def trace(self, message: str, action: IoAction = IoAction.DEPLOY, code: str = None) -> None:
        self.notify(IoMessage(IoMessageLevel.TRACE, message, action=action, code=code))


class CliIoHost(IoHost):
    """
    Renders messages to the terminal.

    Messages go to stderr, except in CI where everything but errors goes to stdout. Messages above the
    configured level are dropped. Debug and trace messages are prefixed with the time and also forwarded to
    the python logging system.
    """

    def __init__(
        self,
        level: IoMessageLevel = IoMessageLevel.INFO,
        ci: bool = False,
        stdout: Console = None,
        stderr: Console = None,
    ):
        self.level = level
        self.ci = ci
        self.stdout = stdout or Console(file=sys.stdout, highlight=False)
        self.stderr = stderr or Console(file=sys.stderr, highlight=False)
        self._lock = threading.RLock()

    @property
    def console(self) -> Console:
        """The console that regular progress output is written to."""
        return self.stdout if self.ci else self.stderr

    def notify(self, msg: IoMessage) -> None:
        if msg.level.priority >= IoMessageLevel.DEBUG.priority:
            LOG.log(_PYTHON_LOG_LEVELS[msg.level], "[%s] %s", msg.action.value, msg.message)

        if msg.level.priority > self.level.priority:
            return

        text = msg.message
        if msg.level.priority >= IoMessageLevel.DEBUG.priority:
            text = f"[{msg.time.strftime('%H:%M:%S')}] {text}"

        with self._lock:
            self._console_for(msg).print(
                text, style=_LEVEL_STYLES[msg.level], markup=False, highlight=False
            )

    def _console_for(self, msg: IoMessage) -> Console:
        if msg.level == IoMessageLevel.ERROR:
            return self.stderr
        if self.ci or msg.force_stdout:
            return self.stdout
        return self.stderr


class RecordingIoHost(IoHost):
    """Keeps all messages in memory, optionally forwarding them to another host."""

    def __init__(self, delegate: IoHost = None):
        self.messages: List[IoMessage] = []
        self.delegate = delegate
        self._lock = threading.Lock()

    def notify(self, msg: IoMessage) -> None:
        with self._lock:
            self.messages.append(msg)
        if self.delegate:
            self.delegate.notify(msg)

    def texts(self, level: IoMessageLevel = None) -> List[str]:
        with self._lock:
            return [m.message for m in self.messages if level is None or m.level == level]

    def codes(self) -> List[str]:
        with self._lock:
            return [m.code for m in self.messages if m.code]
