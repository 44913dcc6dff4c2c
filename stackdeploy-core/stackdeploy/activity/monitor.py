import logging
import re
import sys
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from rich.console import Console

from stackdeploy.constants import LOGICAL_ID_METADATA_KEY
from stackdeploy.deploy.artifact import StackArtifact
from stackdeploy.io import IoHost
from stackdeploy.utils.threads import FuncThread, start_worker_thread

from .poller import StackEventPoller
from .printers import (
    ActivityPrinterBase,
    CurrentActivityPrinter,
    HistoryActivityPrinter,
    PrinterProps,
    ResourceMetadata,
    StackActivity,
    has_error_message,
)

LOG = logging.getLogger(__name__)


class StackActivityProgress(str, Enum):
    # a progress bar with only the resources currently being deployed
    BAR = "bar"
    # the complete history of stack events
    EVENTS = "events"


def calc_max_resource_type_length(template: dict) -> int:
    resources = (template or {}).get("Resources") or {}
    return max([len(resource.get("Type") or "") for resource in resources.values()] or [0])


class StackActivityMonitor:
    """
    Follows the events of a stack while an operation is running, and hands them to a printer.

    Events are read on a background thread every ``printer.update_sleep`` seconds. ``stop()`` waits for a
    read that is in flight and then reads once more, so that events emitted right before the operation
    finished are not lost. Resource failure reasons seen along the way are collected in ``errors``.
    """

    def __init__(
        self,
        cfn,
        stack_name: str,
        printer: ActivityPrinterBase,
        stack: Optional[StackArtifact] = None,
        change_set_creation_time: Optional[datetime] = None,
        io_host: Optional[IoHost] = None,
    ):
        self.stack_name = stack_name
        self.printer = printer
        self.stack = stack
        self.io_host = io_host
        self.errors: List[str] = []
        self.active = False
        self.poller = StackEventPoller(
            cfn,
            stack_name=stack_name,
            start_time=change_set_creation_time or datetime.now(tz=timezone.utc),
        )
        # held while reading events, so that stop() can wait for a read in flight
        self._poll_lock = threading.Lock()
        self._thread: Optional[FuncThread] = None

    @classmethod
    def with_default_printer(
        cls,
        cfn,
        stack_name: str,
        stack: StackArtifact,
        resources_total: Optional[int] = None,
        progress: StackActivityProgress = StackActivityProgress.BAR,
        change_set_creation_time: Optional[datetime] = None,
        ci: bool = False,
        verbose: bool = False,
        console: Console = None,
        io_host: Optional[IoHost] = None,
    ) -> "StackActivityMonitor":
        """Creates a monitor with the printer that best fits the terminal it writes to."""
        console = console or Console(file=sys.stdout if ci else sys.stderr, highlight=False)
        props = PrinterProps(
            resource_type_column_width=calc_max_resource_type_length(stack.template),
            resources_total=resources_total,
            console=console,
        )

        # some CI systems report a TTY, so CI is checked separately
        fancy_output_available = (
            not sys.platform.startswith("win") and console.is_terminal and not ci
        )
        if fancy_output_available and not verbose and progress == StackActivityProgress.BAR:
            printer = CurrentActivityPrinter(props)
        else:
            printer = HistoryActivityPrinter(props)

        return cls(
            cfn,
            stack_name,
            printer,
            stack=stack,
            change_set_creation_time=change_set_creation_time,
            io_host=io_host,
        )

    def start(self) -> "StackActivityMonitor":
        self.active = True
        self.printer.start()
        self._thread = start_worker_thread(self._run, name=f"monitor-{self.stack_name}")
        return self

    def stop(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._thread:
            self._thread.stop()

        # a final read for all events: DescribeStacks may already report the end of the operation
        # while the last (failure) events were not read yet
        self._final_poll_to_end()
        if self._thread:
            self._thread.join()
        self.printer.stop()

    def _run(self, *args, _thread: FuncThread):
        while not _thread.wait_stopped(self.printer.update_sleep):
            self._tick()

    def _tick(self) -> None:
        if not self.active:
            return
        try:
            with self._poll_lock:
                self._read_new_events()
                # we might have been stopped while the network call was in progress
                if not self.active:
                    return
                self.printer.print()
        except Exception as e:
            self._report_error(e)

    def _final_poll_to_end(self) -> None:
        try:
            with self._poll_lock:
                self._read_new_events()
        except Exception as e:
            self._report_error(e)

    def _report_error(self, error: Exception) -> None:
        if self.io_host:
            self.io_host.error(f"Error occurred while monitoring stack: {error}")
        else:
            LOG.error("Error occurred while monitoring stack: %s", error)

    def _read_new_events(self) -> None:
        for event in self.poller.poll():
            activity = StackActivity(
                event=event.event,
                parent_stack_logical_ids=event.parent_stack_logical_ids,
                is_stack_event=event.is_stack_event,
                metadata=self.find_metadata_for(event.event.get("LogicalResourceId")),
            )
            self.check_for_errors(activity)
            self.printer.add_activity(activity)

    def find_metadata_for(self, logical_id: Optional[str]) -> Optional[ResourceMetadata]:
        metadata = self.stack.metadata if self.stack else None
        if not logical_id or not metadata:
            return None
        for path, entries in metadata.items():
            for entry in entries or []:
                if entry.get("type") == LOGICAL_ID_METADATA_KEY and entry.get("data") == logical_id:
                    return ResourceMetadata(
                        entry=entry, construct_path=self.simplify_construct_path(path)
                    )
        return None

    def check_for_errors(self, activity: StackActivity) -> None:
        event = activity.event
        if not has_error_message(event.get("ResourceStatus") or ""):
            return
        reason = event.get("ResourceStatusReason") or ""
        # cancellations and the summary message of the stack itself do not explain anything
        if "cancelled" not in reason and event.get("StackName") != event.get("LogicalResourceId"):
            self.errors.append(reason)

    def simplify_construct_path(self, path: str) -> str:
        path = re.sub(r"/Resource$", "", path)
        path = re.sub(r"^/", "", path)
        prefix = f"{self.stack_name}/"
        if path.startswith(prefix):
            path = path[len(prefix) :]
        return path
