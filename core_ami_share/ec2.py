"""EC2 AMIs: scanning an account/region and the remote operations on a single AMI."""

from typing import Any
from datetime import datetime

from botocore.exceptions import BotoCoreError, ClientError

import core_logging as log

from .errors import ProviderFailure
from .image import Image, is_share_tag, parse_date
from .session import client

TAG_PROPERTY_PREFIX = "tag:"


def _aws_tags(tags: dict[str, str]) -> list[dict[str, str]]:
    return [{"Key": key, "Value": value} for key, value in tags.items()]


class EC2Image(Image):
    """An AMI owned by the account of the session it was scanned with.

    Tags written by this tool (``ShareWith-*``) are stripped when the image is scanned
    and never appear in ``tags`` or ``snapshot_tags``.

    :param ec2_client: EC2 client of the owning account and region
    :param image_id: The AMI id
    :param date_str: The CreationDate reported by EC2
    :param name: The AMI name
    :param tags: Image tags
    :param snapshots: Ids of the EBS snapshots backing the AMI
    :param snapshot_tags: Tags of each snapshot
    """

    def __init__(
        self,
        ec2_client: Any,
        image_id: str,
        date_str: str,
        name: str,
        tags: dict[str, str] | None = None,
        snapshots: list[str] | None = None,
        snapshot_tags: dict[str, dict[str, str]] | None = None,
    ):
        self.ec2_client = ec2_client
        self.id = image_id
        self.date_str = date_str
        self.name = name
        self.tags = tags or {}
        self.snapshots = snapshots or []
        self.snapshot_tags = snapshot_tags or {}
        self._date = parse_date(date_str)

    def properties(self) -> dict[str, str]:
        properties: dict[str, str] = {}
        for key, value in self.tags.items():
            properties[key] = value
            properties[TAG_PROPERTY_PREFIX + key] = value
        properties["ID"] = self.id
        properties["AMIName"] = self.name
        return properties

    def date(self) -> datetime:
        return self._date

    def add_tags(self, tags: dict[str, str], tag_snapshots: bool) -> None:
        resources = [self.id]
        if tag_snapshots:
            resources.extend(self.snapshots)

        for resource_id in resources:
            try:
                self.ec2_client.create_tags(
                    Resources=[resource_id], Tags=_aws_tags(tags)
                )
            except (BotoCoreError, ClientError) as e:
                raise ProviderFailure(f"Failed to tag {resource_id}: {e}") from e

    def share_with_account(self, account_id: str, share_snapshots: bool) -> None:
        try:
            self.ec2_client.modify_image_attribute(
                ImageId=self.id,
                LaunchPermission={"Add": [{"UserId": account_id}]},
            )
        except (BotoCoreError, ClientError) as e:
            raise ProviderFailure(
                f"Failed to share image {self.id} with {account_id}: {e}"
            ) from e

        if not share_snapshots:
            return

        for snapshot_id in self.snapshots:
            try:
                self.ec2_client.modify_snapshot_attribute(
                    SnapshotId=snapshot_id,
                    Attribute="createVolumePermission",
                    OperationType="add",
                    UserIds=[account_id],
                )
            except (BotoCoreError, ClientError) as e:
                raise ProviderFailure(
                    f"Failed to share snapshot {snapshot_id} with {account_id}: {e}"
                ) from e

    def copy_tags(self, session: Any, copy_snapshot_tags: bool) -> None:
        ec2_client = client(session, "ec2")

        resources: list[tuple[str, dict[str, str]]] = [(self.id, self.tags)]
        if copy_snapshot_tags:
            resources.extend(self.snapshot_tags.items())

        for resource_id, tags in resources:
            # create_tags rejects an empty tag list
            if not tags:
                log.trace("No tags to copy for {}", resource_id)
                continue
            try:
                ec2_client.create_tags(Resources=[resource_id], Tags=_aws_tags(tags))
            except (BotoCoreError, ClientError) as e:
                raise ProviderFailure(
                    f"Failed to copy tags to {resource_id}: {e}"
                ) from e

    def marshal(self) -> str:
        return f"ID={self.id}, Name={self.name}, Date={self.date_str}"


def _filter_tags(tags: list[dict[str, str]] | None) -> dict[str, str]:
    return {
        tag["Key"]: tag.get("Value", "")
        for tag in tags or []
        if not is_share_tag(tag.get("Key"))
    }


def _snapshot_ids(image: dict[str, Any]) -> list[str]:
    snapshots = []
    for mapping in image.get("BlockDeviceMappings") or []:
        ebs_info = mapping.get("Ebs")
        if not ebs_info or not ebs_info.get("SnapshotId"):
            log.debug(
                "Skipping block device: {}, because no snapshot to share",
                mapping.get("DeviceName", "unknown"),
            )
            continue
        snapshots.append(ebs_info["SnapshotId"])
    return snapshots


def list_amis(session: Any) -> list[Image]:
    """List the AMIs owned by the session's account in the session's region.

    For each AMI the EBS snapshots are resolved and the tags of every snapshot are
    fetched.

    :param session: A boto3 session scoped to an account and a region
    :return: The images, in the order EC2 returned them
    :rtype: list[Image]
    :raises ProviderFailure: If listing the images or fetching any snapshot's tags
        fails.  No partial result is returned.
    """
    ec2_client = client(session, "ec2")

    try:
        response = ec2_client.describe_images(Owners=["self"])
    except (BotoCoreError, ClientError) as e:
        raise ProviderFailure(f"Failed to describe images: {e}") from e

    images: list[Image] = []
    for out in response.get("Images", []):
        snapshots = _snapshot_ids(out)

        snapshot_tags: dict[str, dict[str, str]] = {}
        for snapshot_id in snapshots:
            try:
                tags_output = ec2_client.describe_tags(
                    Filters=[{"Name": "resource-id", "Values": [snapshot_id]}]
                )
            except (BotoCoreError, ClientError) as e:
                raise ProviderFailure(
                    f"Failed to describe tags of snapshot {snapshot_id}: {e}"
                ) from e
            snapshot_tags[snapshot_id] = _filter_tags(tags_output.get("Tags"))

        images.append(
            EC2Image(
                ec2_client,
                image_id=out["ImageId"],
                date_str=out.get("CreationDate", ""),
                name=out.get("Name", ""),
                tags=_filter_tags(out.get("Tags")),
                snapshots=snapshots,
                snapshot_tags=snapshot_tags,
            )
        )

    log.debug("Found {} AMIs", len(images))
    return images
