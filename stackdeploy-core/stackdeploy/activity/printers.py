"""
Rendering of stack activity.

``HistoryActivityPrinter`` prints one line per event, ``CurrentActivityPrinter`` keeps redrawing a block with
a progress bar and the resources that are currently being worked on.
"""

import math
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.text import Text

from stackdeploy.constants import (
    CURRENT_ACTIVITY_PRINTER_UPDATE_SLEEP,
    HISTORY_PRINTER_UPDATE_SLEEP,
    IN_PROGRESS_NUDGE_DELAY,
)
from stackdeploy.utils.strings import pad_left, pad_right

from .poller import ResourceEvent

TIMESTAMP_WIDTH = 12
STATUS_WIDTH = 20

FULL_BLOCK = "█"
PARTIAL_BLOCK = ["", "▏", "▎", "▍", "▌", "▋", "▊", "▉"]
MAX_PROGRESSBAR_WIDTH = 60
MIN_PROGRESSBAR_WIDTH = 10
# leading spaces, brackets, progress number decoration and two progress numbers up to 999
PROGRESSBAR_EXTRA_SPACE = 2 + 2 + 4 + 6


@dataclass
class ResourceMetadata:
    # the logical id metadata entry of the resource, may carry a creation ``trace``
    entry: dict
    construct_path: str


@dataclass
class StackActivity(ResourceEvent):
    metadata: Optional[ResourceMetadata] = None


@dataclass
class PrinterProps:
    # width of the resource type column, usually the longest type in the template
    resource_type_column_width: int
    # number of resources expected to change, if known
    resources_total: Optional[int]
    console: Console


def has_error_message(status: str) -> bool:
    return status.endswith("_FAILED") or status in (
        "ROLLBACK_IN_PROGRESS",
        "UPDATE_ROLLBACK_IN_PROGRESS",
    )


def color_from_status_result(status: Optional[str]) -> Optional[str]:
    if not status:
        return None
    if "FAILED" in status:
        return "red"
    if "ROLLBACK" in status:
        return "yellow"
    if "COMPLETE" in status:
        return "green"
    return None


def color_from_status_activity(status: Optional[str]) -> Optional[str]:
    if not status:
        return None
    if status.endswith("_FAILED"):
        return "red"
    if status.startswith(("CREATE_", "UPDATE_", "IMPORT_")):
        return "green"
    # stacks can also be in UPDATE_ROLLBACK_IN_PROGRESS
    if "ROLLBACK_" in status:
        return "yellow"
    if status.startswith("DELETE_"):
        return "yellow"
    return None


def shorten(max_width: int, value: str) -> str:
    if len(value) <= max_width:
        return value
    half = (max_width - 3) // 2
    return value[:half] + "..." + value[-half:]


def format_time(timestamp) -> str:
    if isinstance(timestamp, datetime):
        return timestamp.astimezone().strftime("%X")
    return str(timestamp or "")


def _style(*styles: Optional[str]) -> str:
    return " ".join(s for s in styles if s)


class ActivityPrinterBase:
    """Bookkeeping shared by all printers: progress counters, resources in progress and failures."""

    # seconds between two polls
    update_sleep: float = HISTORY_PRINTER_UPDATE_SLEEP

    def __init__(self, props: PrinterProps):
        self.props = props
        self.console = props.console
        # resources which are currently being processed, by logical id
        self.resources_in_progress: Dict[str, StackActivity] = {}
        # previous completion state by logical id. A second completion means we are rolling back, so the
        # done counter is decreased instead of increased. This only drives the progress display.
        self.resources_prev_complete_state: Dict[str, str] = {}
        self.resources_done = 0
        self.rolling_back = False
        self.failures: List[StackActivity] = []
        # logical id -> hook type -> hook failure reason
        self.hook_failure_map: Dict[str, Dict[str, str]] = {}

        # +1 because the stack also emits a "COMPLETE" event at the end, and that wasn't
        # counted yet. This makes it line up with the amount of events we expect.
        self.resources_total = props.resources_total + 1 if props.resources_total else None
        self.resource_digits = (
            math.ceil(math.log10(self.resources_total)) if self.resources_total else 0
        )

    def failure_reason(self, activity: StackActivity) -> str:
        reason = activity.event.get("ResourceStatusReason") or ""
        logical_id = activity.event.get("LogicalResourceId") or ""
        hook_failures = self.hook_failure_map.get(logical_id)
        if hook_failures:
            for hook_type, hook_reason in hook_failures.items():
                if hook_type in reason:
                    return f"{reason} : {hook_reason}"
        return reason

    def add_activity(self, activity: StackActivity) -> None:
        event = activity.event
        status = event.get("ResourceStatus")
        logical_id = event.get("LogicalResourceId")
        hook_status = event.get("HookStatus")
        hook_type = event.get("HookType")
        if not status or not logical_id:
            return

        if status in ("ROLLBACK_IN_PROGRESS", "UPDATE_ROLLBACK_IN_PROGRESS"):
            # only emitted by the stack itself once a rollback started
            self.rolling_back = True

        if status.endswith("_IN_PROGRESS"):
            self.resources_in_progress[logical_id] = activity

        if has_error_message(status):
            if "cancelled" not in (event.get("ResourceStatusReason") or ""):
                self.failures.append(activity)

        if status.endswith("_COMPLETE") or status.endswith("_FAILED"):
            self.resources_in_progress.pop(logical_id, None)

        if status.endswith("_COMPLETE_CLEANUP_IN_PROGRESS"):
            self.resources_done += 1

        if status.endswith("_COMPLETE"):
            if logical_id not in self.resources_prev_complete_state:
                self.resources_done += 1
            else:
                self.resources_done = max(self.resources_done - 1, 0)
            self.resources_prev_complete_state[logical_id] = status

        if hook_status and hook_status.endswith("_COMPLETE_FAILED") and hook_type:
            self.hook_failure_map.setdefault(logical_id, {})[hook_type] = (
                event.get("HookStatusReason") or ""
            )

    def print(self) -> None:
        pass

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass


class HistoryActivityPrinter(ActivityPrinterBase):
    """
    Prints a full log of all stack events.

    When nothing was printed for a while, it lists the resources that are currently in progress, to show
    what is holding up the deployment.
    """

    in_progress_delay: float = IN_PROGRESS_NUDGE_DELAY

    def __init__(self, props: PrinterProps):
        super().__init__(props)
        self.last_print_time = time.monotonic()
        self.printable: List[StackActivity] = []

    def add_activity(self, activity: StackActivity) -> None:
        super().add_activity(activity)
        self.printable.append(activity)
        self.print()

    def print(self) -> None:
        for activity in self.printable:
            self.print_one(activity)
        self.printable.clear()
        self.print_in_progress()

    def stop(self) -> None:
        if self.failures:
            self.console.print("\nFailed resources:", soft_wrap=True)
            for failure in self.failures:
                # root stack failures are not interesting
                if failure.is_stack_event:
                    continue
                self.print_one(failure, progress=False)

    def print_one(self, activity: StackActivity, progress: bool = True) -> None:
        event = activity.event
        status = event.get("ResourceStatus") or ""
        color = color_from_status_result(status)
        reason_color = "cyan"
        stack_trace = ""
        metadata = activity.metadata
        reason = event.get("ResourceStatusReason") or ""

        if "FAILED" in status:
            reason = self.failure_reason(activity) if reason else ""
            if metadata and metadata.entry.get("trace"):
                stack_trace = "\n\t" + "\n\t\\_ ".join(metadata.entry["trace"])
            reason_color = "red"

        resource_name = metadata.construct_path if metadata else event.get("LogicalResourceId") or ""
        logical_id = (
            f"({event.get('LogicalResourceId')}) "
            if resource_name != event.get("LogicalResourceId")
            else ""
        )

        line = Text()
        line.append(f"{event.get('StackName', '')} | ")
        if progress:
            line.append(f"{self.progress()} | ")
        line.append(f"{format_time(event.get('Timestamp'))} | ")
        line.append(pad_right(STATUS_WIDTH, status[:STATUS_WIDTH]), style=color)
        line.append(" | ")
        line.append(pad_right(self.props.resource_type_column_width, event.get("ResourceType") or ""))
        line.append(" | ")
        line.append(resource_name, style=_style(color, "bold"))
        line.append(f" {logical_id}")
        line.append(reason, style=_style(reason_color, "bold"))
        line.append(stack_trace, style=reason_color)
        self.console.print(line, soft_wrap=True)

        self.last_print_time = time.monotonic()

    def progress(self) -> str:
        """The current progress as ``34/42``, or just ``34`` if the total is unknown."""
        if self.resources_total is None:
            return pad_left(3, self.resources_done)
        return (
            f"{pad_left(self.resource_digits, self.resources_done)}"
            f"/{pad_left(self.resource_digits, self.resources_total)}"
        )

    def print_in_progress(self) -> None:
        if time.monotonic() < self.last_print_time + self.in_progress_delay:
            return

        if self.resources_in_progress:
            line = Text(f"{self.progress()} Currently in progress: ")
            line.append(", ".join(self.resources_in_progress.keys()), style="bold")
            self.console.print(line, soft_wrap=True)

        # do not repeat the nudge until something else was printed
        self.last_print_time = math.inf


class CurrentActivityPrinter(ActivityPrinterBase):
    """
    Shows the resources currently being updated, in a block that is redrawn in place.

    The block starts with a progress bar. Failed resources stay visible and are listed again with their
    creation trace when monitoring ends. Resources that failed because they were cancelled are not shown.
    """

    update_sleep: float = CURRENT_ACTIVITY_PRINTER_UPDATE_SLEEP

    def __init__(self, props: PrinterProps):
        super().__init__(props)
        self.live = Live(console=self.console, auto_refresh=False, transient=False)

    def start(self) -> None:
        self.live.start()

    def print(self) -> None:
        lines = []
        progress_width = max(
            min((self.console.width or 80) - PROGRESSBAR_EXTRA_SPACE - 1, MAX_PROGRESSBAR_WIDTH),
            MIN_PROGRESSBAR_WIDTH,
        )
        progress_bar = self.progress_bar(progress_width)
        if progress_bar:
            lines.extend([Text("  ").append_text(progress_bar), Text("")])

        # failures stay on screen so they are noticed while the stack is still rolling back
        to_print = self.failures + list(self.resources_in_progress.values())
        to_print.sort(key=lambda a: a.event.get("Timestamp"))

        for activity in to_print:
            event = activity.event
            status = event.get("ResourceStatus") or ""
            color = color_from_status_activity(status)
            resource_name = (
                activity.metadata.construct_path
                if activity.metadata
                else event.get("LogicalResourceId") or ""
            )
            line = Text()
            line.append(f"{pad_left(TIMESTAMP_WIDTH, format_time(event.get('Timestamp')))} | ")
            line.append(pad_right(STATUS_WIDTH, status[:STATUS_WIDTH]), style=color)
            line.append(" | ")
            line.append(pad_right(self.props.resource_type_column_width, event.get("ResourceType") or ""))
            line.append(" | ")
            line.append(shorten(40, resource_name), style=_style(color, "bold"))
            if has_error_message(status):
                line.append("\n" + " " * (TIMESTAMP_WIDTH + STATUS_WIDTH + 6))
                line.append(self.failure_reason(activity), style="red")
            lines.append(line)

        self.live.update(Group(*lines), refresh=True)

    def stop(self) -> None:
        lines = []
        for failure in self.failures:
            # root stack failures are not interesting
            if failure.is_stack_event:
                continue
            event = failure.event
            resource_name = (
                failure.metadata.construct_path
                if failure.metadata
                else event.get("LogicalResourceId") or ""
            )
            lines.append(
                Text(
                    f"{pad_left(TIMESTAMP_WIDTH, format_time(event.get('Timestamp')))} | "
                    f"{pad_right(STATUS_WIDTH, (event.get('ResourceStatus') or '')[:STATUS_WIDTH])} | "
                    f"{pad_right(self.props.resource_type_column_width, event.get('ResourceType') or '')} | "
                    f"{shorten(40, resource_name)} {self.failure_reason(failure)}",
                    style="red",
                )
            )
            trace = (failure.metadata.entry.get("trace") if failure.metadata else None) or []
            if trace:
                lines.append(Text("\t" + "\n\t\\_ ".join(trace), style="red"))

        # replace the block, so no empty lines are left behind
        self.live.update(Group(*lines), refresh=True)
        self.live.stop()

    def progress_bar(self, width: int) -> Optional[Text]:
        if not self.resources_total:
            return None
        fraction = min(self.resources_done / self.resources_total, 1)
        inner_width = max(1, width - 2)
        chars = inner_width * fraction
        full = math.floor(chars)
        remainder = chars - full

        partial_char = PARTIAL_BLOCK[math.floor(remainder * len(PARTIAL_BLOCK))]
        filler = "·" * (inner_width - full - (1 if partial_char else 0))
        color = "yellow" if self.rolling_back else "green"

        bar = Text("[")
        bar.append(FULL_BLOCK * full + partial_char, style=color)
        bar.append(filler)
        bar.append(f"] ({self.resources_done}/{self.resources_total})")
        return bar
