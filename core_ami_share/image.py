"""The image abstraction and the selection filter.

``Image`` describes what the share engine needs from an image: its properties for
matching, its creation date for picking the most recent one, and the remote operations
used when a plan is executed.  ``core_ami_share.ec2.EC2Image`` is the implementation
for AWS.
"""

from typing import Any
from datetime import datetime, timezone

from .models import Filter

SHARE_WITH_PREFIX = "ShareWith"

# Images with an unparsable creation date sort before everything else
ZERO_TIME = datetime.min.replace(tzinfo=timezone.utc)


def parse_date(value: str | None) -> datetime:
    """Parse an RFC 3339 timestamp such as ``2024-03-01T10:15:30.000Z``.

    Returns ZERO_TIME when the value is missing or cannot be parsed.
    """
    if not value:
        return ZERO_TIME
    try:
        date = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return ZERO_TIME
    if date.tzinfo is None:
        date = date.replace(tzinfo=timezone.utc)
    return date


def is_share_tag(key: str | None) -> bool:
    """Tags written by this tool to record where an image was shared."""
    return bool(key) and key.startswith(SHARE_WITH_PREFIX)


class Image(object):
    """Base class for images that can be planned and shared.

    Subclasses must implement every method.  The base class only provides matching,
    which works on ``properties()``.
    """

    id: str
    name: str

    def properties(self) -> dict[str, str]:
        """Flattened view of the image: every tag plus ``ID`` and ``AMIName``."""
        raise NotImplementedError("Must implement in subclass")

    def date(self) -> datetime:
        raise NotImplementedError("Must implement in subclass")

    def add_tags(self, tags: dict[str, str], tag_snapshots: bool) -> None:
        """Tag the image in its own account, and its snapshots with tag_snapshots."""
        raise NotImplementedError("Must implement in subclass")

    def share_with_account(self, account_id: str, share_snapshots: bool) -> None:
        """Grant launch permission to the account, and create-volume permission on the
        snapshots."""
        raise NotImplementedError("Must implement in subclass")

    def copy_tags(self, session: Any, copy_snapshot_tags: bool) -> None:
        """Write the image's own tags onto the shared image, using another account's
        session."""
        raise NotImplementedError("Must implement in subclass")

    def marshal(self) -> str:
        """The plan file representation of the image."""
        raise NotImplementedError("Must implement in subclass")

    def match(self, image_filter: Filter) -> bool:
        # Missing properties compare as the empty string
        resource_value = self.properties().get(image_filter.property_name, "")
        if image_filter.invert:
            return resource_value != image_filter.value
        return resource_value == image_filter.value

    def __str__(self) -> str:
        return self.id

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.id})"


def apply_filters(images: list[Image] | None, filters: list[Filter]) -> list[Image]:
    """Select the most recent image matching every filter.

    An empty filter list matches every image.  When several matching images share the
    latest creation date, the last of them in input order wins.

    :param images: Candidate images
    :type images: list[Image] | None
    :param filters: Filters that must all match
    :type filters: list[Filter]
    :return: A list with the selected image, or an empty list if nothing matches
    :rtype: list[Image]
    """
    result = [image for image in images or [] if all(image.match(f) for f in filters)]
    if not result:
        return []

    # sorted() is stable, so equal dates keep their input order
    result = sorted(result, key=lambda image: image.date())
    return [result[-1]]
