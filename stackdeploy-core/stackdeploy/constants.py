from stackdeploy.version import __version__

VERSION = __version__

# name of the tool, used in user agents and default names
TOOL_NAME = "stackdeploy"

# base user agent sent with every request
USER_AGENT_STRING = f"{TOOL_NAME}/{VERSION}"

# user agent markers set while hotswapping
HOTSWAP_USER_AGENT_SUCCESS = f"{TOOL_NAME}-hotswap/success"
HOTSWAP_USER_AGENT_FALLBACK = f"{TOOL_NAME}-hotswap/fallback"

# the name of the change set created when none is given
DEFAULT_CHANGE_SET_NAME = f"{TOOL_NAME}-deploy-change-set"

# capabilities acknowledged on every create, update and change set request
STACK_CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM", "CAPABILITY_AUTO_EXPAND"]

# maximum number of hotswap operations in flight at the same time
HOTSWAP_CONCURRENCY = 10

# parameters of these types are resolved by CloudFormation at execution time
SSM_PARAMETER_TYPE_PREFIX = "AWS::SSM::Parameter::"

# a parameter description containing this marker opts out of the parameter-store change check
SKIP_PARAMETER_CHECK_MARKER = f"[{TOOL_NAME}:skip]"

# metadata entry type pointing from a construct path to the logical id of its resource
LOGICAL_ID_METADATA_KEY = "aws:cdk:logicalId"

# resource metadata key pointing at the template file of a nested stack
NESTED_STACK_TEMPLATE_METADATA_KEY = "aws:asset:path"

# sleep between monitor ticks for the history and the live block printer
HISTORY_PRINTER_UPDATE_SLEEP = 5
CURRENT_ACTIVITY_PRINTER_UPDATE_SLEEP = 2

# seconds without output after which the history printer lists what is still in progress
IN_PROGRESS_NUDGE_DELAY = 30

# strings interpreted as true in environment variables
TRUE_STRINGS = ("1", "true", "True")

# SD_LOG values that enable trace logging
SD_LOG_TRACE = "trace"
TRACE_LOG_LEVELS = [SD_LOG_TRACE]

# default AWS region when neither the session nor the environment names one
AWS_REGION_US_EAST_1 = "us-east-1"
