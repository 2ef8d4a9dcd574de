"""Verify that the configured accounts are the accounts the roles actually lead to."""

from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

import core_logging as log

from .errors import AuthFailure, IdentityMismatch
from .models import Account
from .session import DEFAULT_REGION, SessionFactory, SessionKey, client


def account_session_key(account: Account, region: str) -> SessionKey:
    return SessionKey(
        account_id=account.id, assume_role=account.assume_role, region=region
    )


def get_account(
    session_factory: SessionFactory, config_account: Account, logger: Any = None
) -> Account:
    """Ask AWS who the configured account really is.

    The account id comes from STS ``get_caller_identity`` and the alias from IAM
    ``list_account_aliases``, both called with the account's role in the default region.

    :param session_factory: The session cache
    :type session_factory: SessionFactory
    :param config_account: The account as configured
    :type config_account: Account
    :return: An Account holding the id and alias reported by AWS
    :rtype: Account
    :raises AuthFailure: If the session or either identity call fails
    """
    logger = logger or log

    session_key = account_session_key(config_account, DEFAULT_REGION)
    sess = session_factory.get_session(session_key)

    details = {"Account": config_account.id}

    try:
        identity = client(sess, "sts").get_caller_identity()
    except (BotoCoreError, ClientError) as e:
        logger.error("Failed to get caller identity for account", details=details)
        raise AuthFailure(
            f"Failed to get caller identity for account {config_account.id}: {e}"
        ) from e

    try:
        response = client(sess, "iam").list_account_aliases()
    except (BotoCoreError, ClientError) as e:
        logger.error("Failed to get account alias", details=details)
        raise AuthFailure(
            f"Failed to get account alias for account {config_account.id}: {e}"
        ) from e

    aliases = response.get("AccountAliases", [])
    alias = aliases[0] if aliases else ""

    return Account(id=identity["Account"], alias=alias)


def validate_account(
    session_factory: SessionFactory, account: Account, logger: Any = None
) -> None:
    """Compare the configured id and alias with what AWS reports.

    :raises IdentityMismatch: If the account id or the alias differ
    :raises AuthFailure: If the identity cannot be resolved
    """
    expected = get_account(session_factory, account, logger)

    if expected.id != account.id:
        raise IdentityMismatch(
            f"account number does not match. Expected: {expected.id} got {account.id}"
        )

    if expected.alias != account.alias:
        raise IdentityMismatch(
            "account alias does not match. "
            f"Expected: {expected.alias} got {account.alias}"
        )
