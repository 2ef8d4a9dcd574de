"""Build the share plan: scan the source account, then select images for every target
account.

The plan is computed completely, and written to disk, before anything is shared.  The
same plan object is then handed to the executor when live sharing is requested.
"""

from typing import Any, Callable
import io

import inflect
from pydantic import BaseModel, ConfigDict, Field, field_serializer
from ruamel.yaml import YAML

import core_logging as log

from .account import account_session_key
from .ec2 import list_amis
from .errors import PlanWriteError
from .image import Image, apply_filters
from .models import Account, Config
from .session import SessionFactory

ALL = "all"

ImagesByRegion = dict[str, list[Image]]
ImagesByGroup = dict[str, ImagesByRegion]

_p = inflect.engine()


class SharePlanAccount(BaseModel):
    """An account in the plan with its images grouped by image group and region."""

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    id: str
    alias: str
    assume_role: str = Field(..., alias="assume-role")
    amis: ImagesByGroup = Field(default_factory=dict)

    @field_serializer("amis")
    def serialize_amis(self, amis: ImagesByGroup) -> dict[str, dict[str, list[str]]]:
        return {
            group: {
                region: [image.marshal() for image in images]
                for region, images in sorted(by_region.items())
            }
            for group, by_region in sorted(amis.items())
        }

    @classmethod
    def from_account(cls, account: Account, amis: ImagesByGroup) -> "SharePlanAccount":
        return cls(
            id=account.id,
            alias=account.alias,
            assume_role=account.assume_role,
            amis=amis,
        )


class SharePlan(BaseModel):
    """The source account's full inventory under the ``all`` group plus every target's
    selection."""

    model_config = ConfigDict(populate_by_name=True)

    source_account: SharePlanAccount = Field(..., alias="source-account")
    target_accounts: list[SharePlanAccount] = Field(
        default_factory=list, alias="target-accounts"
    )

    def to_yaml(self) -> str:
        yaml = YAML(typ="safe")
        yaml.default_flow_style = False
        stream = io.StringIO()
        yaml.dump(self.model_dump(by_alias=True), stream)
        return stream.getvalue()


def write_plan(plan: SharePlan, path: str, logger: Any = None) -> None:
    """Write the plan file.

    :raises PlanWriteError: If the plan cannot be written
    """
    logger = logger or log
    try:
        with open(path, "w") as f:
            f.write(plan.to_yaml())
    except OSError as e:
        raise PlanWriteError(f"Failed to write plan to {path}: {e}") from e

    logger.info("Wrote plan to: {}", path)


class PlanBuilder:
    """Compute a SharePlan from the configuration.

    :param config: A validated configuration
    :type config: Config
    :param session_factory: Session cache with an initialized master session
    :type session_factory: SessionFactory
    :param scanner: Lists the images of a session.  Defaults to ``list_amis``.
    :type scanner: Callable[[Any], list[Image]]
    :param logger: Logger, defaults to core_logging
    """

    def __init__(
        self,
        config: Config,
        session_factory: SessionFactory,
        scanner: Callable[[Any], list[Image]] = list_amis,
        logger: Any = None,
    ):
        self.config = config
        self.session_factory = session_factory
        self.scanner = scanner
        self.logger = logger or log

    def scan(self, account: Account) -> ImagesByRegion:
        """Scan the account in every configured region.

        :raises AuthFailure: If a session cannot be obtained
        :raises ProviderFailure: If any region cannot be scanned
        """
        region_images: ImagesByRegion = {}
        for region in self.config.scan_regions():
            session_key = account_session_key(account, region)
            sess = self.session_factory.get_session(session_key)
            region_images[region] = self.scanner(sess)
            self.logger.debug(
                "Scanned {} in [{}]",
                _p.no("AMI", len(region_images[region])),
                region,
                details={"Account": account.id, "Region": region},
            )
        return region_images

    def filter(self, source_images: ImagesByRegion, account: Account) -> ImagesByGroup:
        """Select, for every image group of the target account, one image per region.

        Images always come from the source account scan; target accounts are never
        scanned.
        """
        grouped_images: ImagesByGroup = {}
        for group, ami in account.amis.items():
            self.logger.info("Processing {} AMIs", group)

            if ami.copy_image:
                self.logger.warning(
                    "Copying AMIs is not implemented, ignoring copy for group {}", group
                )

            group_regions = ami.regions or account.regions

            region_images: ImagesByRegion = {}
            for region in group_regions:
                filtered_images = apply_filters(source_images.get(region), ami.filters)
                self.logger.debug(
                    "Filters for {}: [{}] AMIs in [{}]",
                    group,
                    ", ".join(str(f) for f in ami.filters),
                    region,
                )
                self.logger.info(
                    "Found {} {} AMIs in [{}]", len(filtered_images), group, region
                )
                self.logger.debug(
                    "Filtered {} AMIs in [{}] => {}",
                    group,
                    region,
                    [str(i) for i in filtered_images],
                )
                region_images[region] = filtered_images

            grouped_images[group] = region_images

        return grouped_images

    def build(self) -> SharePlan:
        """Scan the source account and compute every target account's selection."""
        self.logger.info("Generating plan for sharing AMIs")

        source = self.config.source_account
        images_by_region = self.scan(source)

        plan = SharePlan(
            source_account=SharePlanAccount.from_account(
                source, {ALL: images_by_region}
            )
        )

        for account in self.config.target_accounts:
            images_to_share = self.filter(images_by_region, account)
            plan.target_accounts.append(
                SharePlanAccount.from_account(account, images_to_share)
            )

        return plan
