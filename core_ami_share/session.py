"""Session cache for role-assumed boto3 sessions.

A single master session, built from the ambient credentials (``AWS_PROFILE``,
environment variables, instance profile...), is used only to assume roles.  Every
(account, role, region) combination gets exactly one derived session for the lifetime
of the process.  Derived sessions assume their role again before the temporary
credentials expire.
"""

from typing import Any
from datetime import datetime

import boto3
import botocore.session
from botocore.config import Config as BotoConfig
from botocore.credentials import RefreshableCredentials
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, ConfigDict

import core_logging as log

from .errors import AuthFailure, SessionNotInitialized

DEFAULT_REGION = "us-east-1"

ROLE_SESSION_PREFIX = "ami-share"

CREDENTIAL_METHOD = "sts-assume-role"

# Every remote call is attempted exactly once, with bounded wait times
CLIENT_CONFIG = BotoConfig(
    connect_timeout=10,
    read_timeout=60,
    retries={"total_max_attempts": 1, "mode": "standard"},
)


class SessionKey(BaseModel):
    """Identity of a cached session.

    Two keys with the same account, role and region address the same session.
    """

    model_config = ConfigDict(frozen=True)

    account_id: str
    assume_role: str
    region: str

    def __str__(self) -> str:
        return f"{self.account_id} in {self.region} as [{self.assume_role}]"


def client(session: Any, service_name: str) -> Any:
    """Create a client from a session with the shared client configuration."""
    return session.client(service_name, config=CLIENT_CONFIG)


class SessionFactory:
    """Return a boto3 session by account, role and region.

    The master session must be generated before any role can be assumed.  Sessions
    are cached, so asking twice for the same key returns the same session object.

    Example::

        factory = SessionFactory()
        master_key = SessionKey(account_id="111111111111", assume_role=arn, region="us-east-1")
        factory.generate_master_session(master_key)
        key = SessionKey(account_id="222222222222", assume_role=other_arn, region="eu-west-1")
        sess = factory.get_session(key)
    """

    def __init__(self, logger: Any = None):
        self.logger = logger or log
        self.master_session: Any = None
        self.session_cache: dict[SessionKey, Any] = {}

    def generate_master_session(self, session_key: SessionKey) -> Any:
        """Create the master session used to assume roles.

        Only one master session is ever created.  Later calls return the existing one.

        :param session_key: Key whose region is used for the master session
        :type session_key: SessionKey
        :return: The master session
        :raises AuthFailure: If the session cannot be created from the ambient
            credentials
        """
        if self.master_session is not None:
            self.logger.debug(
                "Master session already initialized, ignoring request for {}",
                session_key,
            )
            return self.master_session

        self.logger.debug("Creating master session with: {}", session_key)

        try:
            self.master_session = boto3.session.Session(region_name=session_key.region)
        except (BotoCoreError, ClientError) as e:
            raise AuthFailure(
                f"Failed to create master session for {session_key}: {e}"
            ) from e

        return self.master_session

    def _assume_role(self, session_key: SessionKey) -> dict[str, str]:
        """Assume the key's role with the master session.

        :return: Credential metadata in the form botocore refreshes from
        """
        sts_client = self.master_session.client(
            "sts", region_name=session_key.region, config=CLIENT_CONFIG
        )
        response = sts_client.assume_role(
            RoleArn=session_key.assume_role,
            RoleSessionName=f"{ROLE_SESSION_PREFIX}-{session_key.account_id}",
        )
        credentials = response["Credentials"]

        expiration = credentials["Expiration"]
        if isinstance(expiration, datetime):
            expiration = expiration.isoformat()

        return {
            "access_key": credentials["AccessKeyId"],
            "secret_key": credentials["SecretAccessKey"],
            "token": credentials["SessionToken"],
            "expiry_time": expiration,
        }

    def get_session(self, session_key: SessionKey) -> Any:
        """Return the session for the key, assuming the key's role on first use.

        The role is assumed again whenever the temporary credentials are about to
        expire, so a cached session stays usable for the whole run.

        :param session_key: The account, role and region of the session
        :type session_key: SessionKey
        :return: A boto3 session scoped to the key's region with the role's credentials
        :raises SessionNotInitialized: If the master session has not been generated
        :raises AuthFailure: If the role cannot be assumed
        """
        sess = self.session_cache.get(session_key)
        if sess is not None:
            return sess

        if self.master_session is None:
            raise SessionNotInitialized(
                "master session not initialized - required to assume role"
            )

        self.logger.debug("Generating session: {}", session_key)

        try:
            credentials = RefreshableCredentials.create_from_metadata(
                metadata=self._assume_role(session_key),
                refresh_using=lambda: self._assume_role(session_key),
                method=CREDENTIAL_METHOD,
            )
        except (BotoCoreError, ClientError, KeyError) as e:
            raise AuthFailure(f"Failed to assume role for {session_key}: {e}") from e

        botocore_session = botocore.session.get_session()
        botocore_session._credentials = credentials

        sess = boto3.session.Session(
            botocore_session=botocore_session, region_name=session_key.region
        )

        self.session_cache[session_key] = sess
        return sess
