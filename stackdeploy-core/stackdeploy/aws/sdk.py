import logging
import threading
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List, Optional

from boto3.session import Session
from botocore.client import BaseClient
from botocore.config import Config

from stackdeploy import config as sd_config
from stackdeploy.constants import AWS_REGION_US_EAST_1, USER_AGENT_STRING

LOG = logging.getLogger(__name__)


@dataclass
class Account:
    account_id: str
    partition: str


class Sdk:
    """
    Access to the AWS service clients used while deploying a stack.

    Boto client creation is resource intensive. This class caches all Boto
    clients it creates and must be used instead of directly using boto lib.
    All clients share the custom user agent markers added with ``append_custom_user_agent``.
    """

    def __init__(
        self,
        session: Session = None,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        config: Config = None,
    ):
        """
        :param session: Session to be used for client creation. Will create a new session if not provided.
            Sessions are not thread safe, client creation is therefore guarded by a lock.
        :param region_name: the region of all clients, defaults to the region of the session
        :param endpoint_url: an alternative endpoint for all clients, e.g. an emulator
        :param config: Config used as default for client creation.
        """
        self._session: Session = session or Session()
        self._region_name = region_name
        self._endpoint_url = endpoint_url
        self._config: Config = config or Config(
            max_pool_connections=sd_config.BOTO_MAX_POOL_CONNECTIONS,
            user_agent_extra=USER_AGENT_STRING,
        )
        self._create_client_lock = threading.RLock()
        self._user_agent_lock = threading.RLock()
        self._custom_user_agents: List[str] = []
        self._account: Optional[Account] = None

    @property
    def region(self) -> str:
        """
        Return the AWS region name from following sources, in order of availability.
        - the region given to the constructor
        - Boto session
        - AWS_REGION / AWS_DEFAULT_REGION
        - us-east-1
        """
        return (
            self._region_name
            or self._session.region_name
            or sd_config.AWS_REGION
            or AWS_REGION_US_EAST_1
        )

    def client(self, service_name: str) -> BaseClient:
        return self._get_client(service_name, self.region, self._endpoint_url)

    def cloudformation(self):
        return self.client("cloudformation")

    def lambda_(self):
        return self.client("lambda")

    def stepfunctions(self):
        return self.client("stepfunctions")

    def ecs(self):
        return self.client("ecs")

    def codebuild(self):
        return self.client("codebuild")

    def appsync(self):
        return self.client("appsync")

    def s3(self):
        return self.client("s3")

    def sts(self):
        return self.client("sts")

    def current_account(self) -> Account:
        """Returns the account and partition of the current credentials, as reported by STS."""
        if self._account is None:
            identity = self.sts().get_caller_identity()
            # arn:<partition>:sts::<account>:assumed-role/...
            partition = identity["Arn"].split(":")[1]
            self._account = Account(account_id=identity["Account"], partition=partition)
            LOG.debug(
                "Resolved account %s in partition %s",
                self._account.account_id,
                self._account.partition,
            )
        return self._account

    def url_suffix(self) -> str:
        return "amazonaws.com.cn" if self.region.startswith("cn-") else "amazonaws.com"

    #
    # user agent markers
    #

    def append_custom_user_agent(self, user_agent: str) -> None:
        with self._user_agent_lock:
            self._custom_user_agents.append(user_agent)

    def remove_custom_user_agent(self, user_agent: str) -> None:
        with self._user_agent_lock:
            if user_agent in self._custom_user_agents:
                self._custom_user_agents.remove(user_agent)

    @property
    def custom_user_agents(self) -> List[str]:
        with self._user_agent_lock:
            return list(self._custom_user_agents)

    def _handler_inject_user_agent(self, params: dict[str, Any], **kwargs):
        """Appends the active custom user agent markers to the ``User-Agent`` header of each request."""
        agents = self.custom_user_agents
        if not agents:
            return
        headers = params.setdefault("headers", {})
        current = headers.get("User-Agent", "")
        headers["User-Agent"] = " ".join([current, *agents]).strip()

    # TODO @lru_cache keeps a reference to `self`, an Sdk is therefore never garbage collected
    @lru_cache(maxsize=64)
    def _get_client(
        self, service_name: str, region_name: str, endpoint_url: Optional[str]
    ) -> BaseClient:
        """
        Returns a boto3 client with the user agent handler registered.
        This is a cached call, so modifications to the used client will affect others.
        Client creation is behind a lock as it is not generally thread safe.
        """
        with self._create_client_lock:
            default_config = (
                Config(retries={"max_attempts": 0})
                if sd_config.DISABLE_BOTO_RETRIES
                else Config(retries={"mode": "standard"})
            )

            client = self._session.client(
                service_name=service_name,
                region_name=region_name,
                endpoint_url=endpoint_url,
                config=self._config.merge(default_config),
            )

        client.meta.events.register("before-call.*.*", handler=self._handler_inject_user_agent)
        return client


def select_operation_input(client: BaseClient, operation_name: str, params: dict) -> dict:
    """
    Drops all keys of ``params`` that are not members of the input shape of the given operation.

    Request objects built from template properties contain properties the API does not know about,
    which botocore would reject.
    """
    input_shape = client.meta.service_model.operation_model(operation_name).input_shape
    members = input_shape.members if input_shape else {}
    return {k: v for k, v in params.items() if k in members and v is not None}
