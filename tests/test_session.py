import pytest
from unittest.mock import MagicMock, patch
from datetime import datetime, timedelta, timezone

from botocore.exceptions import ClientError

from core_ami_share.errors import AuthFailure, SessionNotInitialized
from core_ami_share.session import CLIENT_CONFIG, SessionFactory, SessionKey

from .aws_fixtures import *

MASTER_KEY = SessionKey(
    account_id="123456789012",
    assume_role="arn:aws:iam::123456789012:role/ami-share",
    region="us-east-1",
)

TARGET_KEY = SessionKey(
    account_id="234567890123",
    assume_role="arn:aws:iam::234567890123:role/ami-share",
    region="eu-west-1",
)


def test_get_session_requires_master(mock_session):
    factory = SessionFactory()

    with pytest.raises(SessionNotInitialized):
        factory.get_session(TARGET_KEY)

    # SessionNotInitialized is an authentication failure
    with pytest.raises(AuthFailure):
        factory.get_session(TARGET_KEY)


def test_generate_master_session_once(mock_session):
    factory = SessionFactory()

    first = factory.generate_master_session(MASTER_KEY)
    second = factory.generate_master_session(TARGET_KEY)

    assert first is second
    mock_session.session_class.assert_called_once_with(region_name="us-east-1")


def test_get_session_assumes_role(mock_session, mock_client, mock_credentials):
    factory = SessionFactory()
    factory.generate_master_session(MASTER_KEY)

    sess = factory.get_session(TARGET_KEY)

    assert sess is mock_session
    mock_session.client.assert_called_once_with(
        "sts", region_name="eu-west-1", config=CLIENT_CONFIG
    )
    mock_client.assume_role.assert_called_once_with(
        RoleArn="arn:aws:iam::234567890123:role/ami-share",
        RoleSessionName="ami-share-234567890123",
    )

    kwargs = mock_session.session_class.call_args.kwargs
    assert kwargs["region_name"] == "eu-west-1"

    credentials = kwargs["botocore_session"].get_credentials()
    assert credentials.method == "sts-assume-role"
    frozen = credentials.get_frozen_credentials()
    assert frozen.access_key == mock_credentials["AccessKeyId"]
    assert frozen.secret_key == mock_credentials["SecretAccessKey"]
    assert frozen.token == mock_credentials["SessionToken"]


def test_get_session_refreshes_expired_credentials(mock_session, mock_client, mock_credentials):
    """Expired credentials are renewed by assuming the role again."""
    expired = dict(mock_credentials, Expiration=datetime.now(timezone.utc) - timedelta(minutes=5))
    renewed = dict(
        mock_credentials,
        AccessKeyId="renewed_access_key",
        Expiration=datetime.now(timezone.utc) + timedelta(hours=1),
    )
    mock_client.assume_role.side_effect = [
        {"Credentials": expired},
        {"Credentials": renewed},
    ]

    factory = SessionFactory()
    factory.generate_master_session(MASTER_KEY)
    factory.get_session(TARGET_KEY)

    botocore_session = mock_session.session_class.call_args.kwargs["botocore_session"]
    frozen = botocore_session.get_credentials().get_frozen_credentials()

    assert frozen.access_key == "renewed_access_key"
    assert mock_client.assume_role.call_count == 2
    assert mock_client.assume_role.call_args.kwargs["RoleArn"] == TARGET_KEY.assume_role

    # the cached session keeps the refreshed credentials
    assert len(factory.session_cache) == 1


def test_get_session_is_cached(mock_client):
    """The same key always returns the same session, different keys get their own."""
    master = MagicMock()
    master.client.return_value = mock_client

    with patch("boto3.session.Session", side_effect=lambda **kwargs: MagicMock()) as session_class:
        factory = SessionFactory()
        factory.generate_master_session(MASTER_KEY)
        factory.master_session = master

        first = factory.get_session(TARGET_KEY)
        again = factory.get_session(SessionKey(**TARGET_KEY.model_dump()))
        other = factory.get_session(TARGET_KEY.model_copy(update={"region": "us-east-1"}))

    assert first is again
    assert other is not first
    assert mock_client.assume_role.call_count == 2
    # one master session + two derived sessions
    assert session_class.call_count == 3
    assert len(factory.session_cache) == 2


def test_get_session_assume_role_failure(mock_session, mock_client):
    mock_client.assume_role.side_effect = ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "not authorized to perform sts:AssumeRole"}},
        "AssumeRole",
    )

    factory = SessionFactory()
    factory.generate_master_session(MASTER_KEY)

    with pytest.raises(AuthFailure, match="Failed to assume role"):
        factory.get_session(TARGET_KEY)

    assert TARGET_KEY not in factory.session_cache


def test_session_key_string():
    assert str(TARGET_KEY) == "234567890123 in eu-west-1 as [arn:aws:iam::234567890123:role/ami-share]"
