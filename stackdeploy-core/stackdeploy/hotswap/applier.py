import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from botocore.exceptions import WaiterError

from stackdeploy.aws.sdk import Sdk
from stackdeploy.constants import HOTSWAP_CONCURRENCY, HOTSWAP_USER_AGENT_SUCCESS
from stackdeploy.exceptions import HotswapTimeoutError
from stackdeploy.io import IoHost

from .common import ICON, HotswappableChange

LOG = logging.getLogger(__name__)


def apply_all_hotswappable_changes(
    sdk: Sdk, changes: List[HotswappableChange], io_host: Optional[IoHost] = None
) -> None:
    """
    Applies all changes, at most ``HOTSWAP_CONCURRENCY`` at the same time.

    All changes run to completion (or failure), the first failure (in the order of ``changes``) is raised
    afterwards.
    """
    if not changes:
        return
    _info(io_host, f"\n{ICON} hotswapping resources:")

    with ThreadPoolExecutor(
        max_workers=HOTSWAP_CONCURRENCY, thread_name_prefix="hotswap-apply"
    ) as executor:
        futures = [
            executor.submit(apply_hotswappable_change, sdk, change, io_host) for change in changes
        ]

    for future in futures:
        error = future.exception()
        if error:
            raise error


def apply_hotswappable_change(
    sdk: Sdk, change: HotswappableChange, io_host: Optional[IoHost] = None
) -> None:
    # the service is tagged in the user agent of the requests made for this change
    custom_user_agent = f"{HOTSWAP_USER_AGENT_SUCCESS}-{change.service}"
    sdk.append_custom_user_agent(custom_user_agent)
    try:
        for name in change.resource_names:
            _info(io_host, f"   {ICON} {name}")

        try:
            change.apply(sdk)
        except WaiterError as e:
            # report the state the waiter ended in, rather than a generic waiter failure
            state = "TIMEOUT" if "Max attempts exceeded" in str(e) else "FAILURE"
            raise HotswapTimeoutError(state, e.kwargs.get("reason") or str(e)) from e
        except TimeoutError as e:
            raise HotswapTimeoutError("TIMEOUT", str(e) or "Timed out") from e

        for name in change.resource_names:
            _info(io_host, f"{ICON} {name} hotswapped!")
    finally:
        sdk.remove_custom_user_agent(custom_user_agent)


def _info(io_host: Optional[IoHost], message: str) -> None:
    if io_host:
        io_host.info(message)
    else:
        LOG.info(message)
