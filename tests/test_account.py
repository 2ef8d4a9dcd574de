import pytest

from botocore.exceptions import ClientError

from core_ami_share.account import account_session_key, get_account, validate_account
from core_ami_share.errors import AuthFailure, IdentityMismatch
from core_ami_share.models import Account
from core_ami_share.session import SessionFactory

from .aws_fixtures import *


@pytest.fixture
def account():
    return Account(
        id="123456789012",
        alias="ami-registry",
        assume_role="arn:aws:iam::123456789012:role/ami-share",
    )


@pytest.fixture
def session_factory(mock_session, account):
    factory = SessionFactory()
    factory.generate_master_session(account_session_key(account, "us-east-1"))
    return factory


def test_get_account(session_factory, account, mock_client):
    actual = get_account(session_factory, account)

    assert actual.id == "123456789012"
    assert actual.alias == "ami-registry"
    mock_client.get_caller_identity.assert_called_once_with()
    mock_client.list_account_aliases.assert_called_once_with()


def test_validate_account(session_factory, account):
    validate_account(session_factory, account)

    # Identity is resolved in the default region
    assert list(session_factory.session_cache) == [account_session_key(account, "us-east-1")]


def test_validate_account_id_mismatch(session_factory, account, mock_client):
    mock_client.get_caller_identity.return_value = {"Account": "999999999999"}

    with pytest.raises(IdentityMismatch, match="account number does not match"):
        validate_account(session_factory, account)


def test_validate_account_alias_mismatch(session_factory, account, mock_client):
    mock_client.list_account_aliases.return_value = {"AccountAliases": ["someone-else"]}

    with pytest.raises(IdentityMismatch, match="account alias does not match. Expected: someone-else got ami-registry"):
        validate_account(session_factory, account)


def test_validate_account_without_alias(session_factory, account, mock_client):
    mock_client.list_account_aliases.return_value = {"AccountAliases": []}

    with pytest.raises(IdentityMismatch):
        validate_account(session_factory, account)


def test_validate_account_identity_failure(session_factory, account, mock_client):
    mock_client.get_caller_identity.side_effect = ClientError(
        {"Error": {"Code": "ExpiredToken", "Message": "expired"}}, "GetCallerIdentity"
    )
    logger = MagicMock()

    with pytest.raises(AuthFailure):
        validate_account(session_factory, account, logger)

    logger.error.assert_called_once()


def test_validate_account_role_failure(session_factory, account, mock_client):
    mock_client.assume_role.side_effect = ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "AssumeRole"
    )

    with pytest.raises(AuthFailure):
        validate_account(session_factory, account)


def test_validate_account_without_master(account, mock_session):
    with pytest.raises(AuthFailure):
        validate_account(SessionFactory(), account)
