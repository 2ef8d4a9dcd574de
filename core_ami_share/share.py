"""Run a share: verify the accounts, build and write the plan, and execute it when
asked to."""

from typing import Any
import threading

import inflect

import core_logging as log

from .account import account_session_key, validate_account
from .errors import AuthFailure, Cancelled, ProviderFailure
from .image import SHARE_WITH_PREFIX
from .models import ShareParams
from .plan import PlanBuilder, SharePlan, write_plan
from .session import DEFAULT_REGION, SessionFactory, SessionKey

_p = inflect.engine()


def share_marker_tags(alias: str) -> dict[str, str]:
    return {f"{SHARE_WITH_PREFIX}-{alias}": "1"}


class PlanExecutor:
    """Share the images of a plan with the target accounts.

    Accounts are processed in plan order; groups and regions in sorted order.  For
    every image:

    1. share the image (and its snapshots) with the target account
    2. tag it ``ShareWith-<alias>=1``
    3. apply the source account's post-share tags
    4. copy the image's tags onto the shared image in the target account

    A failure at step 1 or 4 stops the remaining images of that region.  Failures at
    steps 2 and 3 are logged and the image is still processed.

    :param session_factory: Session cache with an initialized master session
    :param share_snapshots: Also share and tag the snapshots of each image
    :param post_share_tags: Tags applied to each shared image and its snapshots
    :param cancel_event: When set, execution stops before the next image
    :param logger: Logger, defaults to core_logging
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        share_snapshots: bool = False,
        post_share_tags: dict[str, str] | None = None,
        cancel_event: threading.Event | None = None,
        logger: Any = None,
    ):
        self.session_factory = session_factory
        self.share_snapshots = share_snapshots
        self.post_share_tags = post_share_tags or {}
        self.cancel_event = cancel_event or threading.Event()
        self.logger = logger or log
        self.shared: dict[str, int] = {}
        self.failed: dict[str, int] = {}

    def execute(self, plan: SharePlan) -> None:
        """Execute the plan.

        :raises Cancelled: If the cancel event was set during execution
        """
        self.logger.info("Running plan for sharing AMIs")

        for account in plan.target_accounts:
            self.shared.setdefault(account.id, 0)
            self.failed.setdefault(account.id, 0)

            for ami_group in sorted(account.amis):
                amis_by_region = account.amis[ami_group]
                for region in sorted(amis_by_region):
                    session_key = SessionKey(
                        account_id=account.id,
                        assume_role=account.assume_role,
                        region=region,
                    )
                    for ami in amis_by_region[region]:
                        if self.cancel_event.is_set():
                            self.logger.warning(
                                "Cancellation requested, stopping before AMI [{}]", ami
                            )
                            raise Cancelled("execution cancelled")

                        if not self._share_image(
                            ami, ami_group, account, region, session_key
                        ):
                            self.failed[account.id] += 1
                            break
                        self.shared[account.id] += 1

            self.logger.info(
                "Shared {} with account [{}]",
                _p.no("AMI", self.shared[account.id]),
                account.id,
                details={
                    "Shared": self.shared[account.id],
                    "Failed": self.failed[account.id],
                },
            )

    def _share_image(
        self, ami, ami_group: str, account, region: str, session_key: SessionKey
    ) -> bool:
        """Process one image.  Returns False when the rest of the region must be
        skipped."""
        details = {
            "Account": account.id,
            "Region": region,
            "Group": ami_group,
            "Image": str(ami),
        }

        self.logger.info(
            "Sharing AMI {}[{}] with account [{}] in region [{}]",
            ami_group,
            ami,
            account.id,
            region,
            details=details,
        )
        try:
            ami.share_with_account(account.id, self.share_snapshots)
        except ProviderFailure as e:
            self.logger.error(
                "Failed to share AMI [{}] with account: {}. Error: {}",
                ami,
                account.id,
                e,
                details=details,
            )
            return False

        try:
            ami.add_tags(share_marker_tags(account.alias), self.share_snapshots)
        except ProviderFailure as e:
            self.logger.error(
                "Failed to add meta post-share tags to AMI [{}] in account: [{}]. "
                "Error: {}",
                ami,
                account.id,
                e,
                details=details,
            )

        if self.post_share_tags:
            try:
                ami.add_tags(self.post_share_tags, True)
            except ProviderFailure as e:
                self.logger.error(
                    "Failed to add post-share tags to AMI [{}] in account: [{}]. "
                    "Error: {}",
                    ami,
                    account.id,
                    e,
                    details=details,
                )

        try:
            sess = self.session_factory.get_session(session_key)
        except AuthFailure as e:
            self.logger.error(
                "Failed to get session for account: {} in region [{}]. Error: {}",
                account.id,
                region,
                e,
                details=details,
            )
            return False

        try:
            ami.copy_tags(sess, self.share_snapshots)
        except ProviderFailure as e:
            self.logger.error(
                "Failed to copy tags for AMI [{}] in account: {}. Error: {}",
                ami,
                account.id,
                e,
                details=details,
            )
            return False

        return True


class ShareAMI:
    """Orchestrate a complete run.

    Creating a ShareAMI creates the master session from the source account's key in the
    default region.

    :param params: Validated run parameters
    :type params: ShareParams
    :param session_factory: Session cache.  A new one is created when omitted.
    :param scanner: Passed to PlanBuilder, lists the images of a session
    :param logger: Logger, defaults to core_logging
    :raises AuthFailure: If the master session cannot be created
    """

    def __init__(
        self,
        params: ShareParams,
        session_factory: SessionFactory | None = None,
        scanner: Any = None,
        logger: Any = None,
    ):
        self.params = params
        self.logger = logger or log
        self.session_factory = session_factory or SessionFactory(logger=self.logger)
        self.cancel_event = threading.Event()

        builder_kwargs: dict[str, Any] = {"logger": self.logger}
        if scanner is not None:
            builder_kwargs["scanner"] = scanner
        self.builder = PlanBuilder(
            params.config, self.session_factory, **builder_kwargs
        )

        self.session_factory.generate_master_session(
            account_session_key(params.config.source_account, DEFAULT_REGION)
        )

    def cancel(self) -> None:
        self.cancel_event.set()

    def validate_accounts(self) -> None:
        """Verify the source account, then every target account.

        :raises IdentityMismatch: On the first account whose id or alias does not match
        :raises AuthFailure: If an account's identity cannot be resolved
        """
        config = self.params.config

        self.logger.info("Validating source account")
        validate_account(self.session_factory, config.source_account, self.logger)

        for account in config.target_accounts:
            self.logger.info("Validating account: {}", account.id)
            validate_account(self.session_factory, account, self.logger)

    def run(self) -> SharePlan:
        """Build and write the plan, then execute it if this is not a dry run.

        :return: The plan that was written
        :rtype: SharePlan
        :raises ProviderFailure: If the source account cannot be scanned
        :raises PlanWriteError: If the plan file cannot be written
        :raises Cancelled: If execution was cancelled
        """
        plan = self.builder.build()
        self.logger.debug("Plan for sharing:", details=plan.model_dump(by_alias=True))

        write_plan(plan, self.params.plan_file, self.logger)

        if not self.params.no_dry_run:
            self.logger.info("Would share AMIs in plan: {}", self.params.plan_file)
            return plan

        executor = PlanExecutor(
            self.session_factory,
            share_snapshots=self.params.share_snapshots,
            post_share_tags=self.params.config.source_account.post_share_tags,
            cancel_event=self.cancel_event,
            logger=self.logger,
        )
        executor.execute(plan)

        return plan
