import logging
import os

from stackdeploy.constants import TRACE_LOG_LEVELS, TRUE_STRINGS


def is_env_true(env_var_name: str) -> bool:
    """Whether the given environment variable has a truthy value."""
    return os.environ.get(env_var_name, "").lower().strip() in TRUE_STRINGS


def parse_float_env(env_var_name: str, default: float) -> float:
    value = os.environ.get(env_var_name, "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logging.getLogger(__name__).warning(
            "Ignoring invalid value %r for %s, using %s", value, env_var_name, default
        )
        return default


# whether to enable debug logging and verbose activity output
DEBUG = is_env_true("DEBUG")

# explicit log level: "trace", "debug", "info", "warn" or "error"
SD_LOG = (os.environ.get("SD_LOG") or "").strip() or None

# whether we are running in a CI environment; disables the live progress block and writes to stdout
CI = is_env_true("CI")

# seconds between status polls of stacks and change sets, and the upper bound of the backoff
STACK_POLL_INTERVAL = parse_float_env("STACK_POLL_INTERVAL", 5)
STACK_POLL_MAX_INTERVAL = parse_float_env("STACK_POLL_MAX_INTERVAL", 10)

# seconds to wait for a change set to finish creating
CHANGE_SET_TIMEOUT = parse_float_env("CHANGE_SET_TIMEOUT", 600)

# whether to disable the botocore retry handler
DISABLE_BOTO_RETRIES = is_env_true("DISABLE_BOTO_RETRIES")

# size of the botocore connection pool, must be at least the hotswap concurrency
BOTO_MAX_POOL_CONNECTIONS = int(parse_float_env("BOTO_MAX_POOL_CONNECTIONS", 50))

# region used when neither the command line nor the boto session define one
AWS_REGION = (os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION") or "").strip()


def is_trace_logging_enabled():
    if SD_LOG:
        return SD_LOG.lower() in TRACE_LOG_LEVELS
    return False


# set log levels immediately, but will be overwritten later by setup_logging
if DEBUG:
    logging.getLogger("").setLevel(logging.DEBUG)
    logging.getLogger("stackdeploy").setLevel(logging.DEBUG)
