"""Configuration models for the AMI share engine.

The YAML keys of the configuration file are used as field aliases so that a
config file can be validated with ``Config(**data)`` directly.
"""

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from .errors import ConfigError

ROLE_ARN_PREFIX = "arn:"


class Filter(BaseModel):
    """A single predicate over the properties of an image.

    Attributes
    ----------
    property_name : str
        The property to compare.  Any tag key, or one of the synthetic
        properties ``ID`` and ``AMIName``.
    value : str
        The expected value of the property
    invert : bool
        When true the filter matches images whose property does NOT equal value
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    property_name: str = Field(
        ..., alias="property", description="The image property to match"
    )
    value: str = Field("", description="The expected value of the property")
    invert: bool = Field(
        False, description="Match when the property does not equal the value"
    )

    def __str__(self) -> str:
        invert_text = "(inverted)" if self.invert else ""
        return f"{{{self.property_name}={self.value}{invert_text}}}"


class AmiSelection(BaseModel):
    """A named image group: which regions to look in and which filters to apply.

    Each group selects at most one image per region.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    copy_image: bool = Field(
        False,
        alias="copy",
        description="Copy the image to the group regions (parsed, not implemented)",
    )
    regions: list[str] = Field(
        default_factory=list,
        description="Regions for this group.  Defaults to the regions of the account",
    )
    filters: list[Filter] = Field(
        default_factory=list, description="Filters that must all match"
    )


class Account(BaseModel):
    """A source or target AWS account.

    Attributes
    ----------
    id : str
        The 12 digit AWS account id
    alias : str
        The IAM account alias, verified against AWS before anything is scanned
    assume_role : str
        The role to assume in the account.  A bare role name is expanded into a
        role ARN.
    post_share_tags : dict[str, str]
        Tags written on every shared image (source account only)
    regions : list[str]
        Default regions of the account's image groups (target accounts only)
    amis : dict[str, AmiSelection]
        Named image groups (target accounts only)
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    id: str = Field(..., description="The AWS account id")
    alias: str = Field("", description="The AWS account alias")
    assume_role: str = Field(
        "", alias="assume-role", description="The role name or ARN to assume"
    )
    post_share_tags: dict[str, str] = Field(
        default_factory=dict,
        alias="post-share-tags",
        description="Tags applied to images after they are shared",
    )
    regions: list[str] = Field(
        default_factory=list, description="Default regions of the image groups"
    )
    amis: dict[str, AmiSelection] = Field(
        default_factory=dict, description="Image groups by name"
    )

    def generate_role_arn(self) -> str:
        """Expand the assume-role into a role ARN.

        Role ARN format: ``arn:aws:iam::account-id:role/role-name``.  A value
        that is already an ARN is left untouched, so calling this more than once
        is harmless.

        Returns
        -------
        str
            The role ARN
        """
        if self.assume_role and not self.assume_role.startswith(ROLE_ARN_PREFIX):
            self.assume_role = f"arn:aws:iam::{self.id}:role/{self.assume_role}"
        return self.assume_role

    def __str__(self) -> str:
        return f"{self.alias} ({self.id})"


class Config(BaseModel):
    """The contents of the configuration file."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    source_account: Account = Field(..., alias="source-account")
    target_accounts: list[Account] = Field(
        default_factory=list, alias="target-accounts"
    )

    _regions: list[str] = PrivateAttr(default_factory=list)

    def validate_config(self) -> None:
        """Check the account rules and expand the role ARNs.

        Raises
        ------
        ConfigError
            If the source account declares regions or AMI groups, if any account has
            no assume-role, or if a target account has no AMI groups or declares
            post-share-tags
        """
        source = self.source_account
        if len(source.regions) > 0 or len(source.amis) > 0:
            raise ConfigError(
                f"fields [regions] and/or [amis] not allowed on source account [{source.alias}]"
            )

        if not source.assume_role:
            raise ConfigError(
                f"assume-role must be specified on source account [{source.alias}]"
            )

        for account in self.target_accounts:
            if len(account.amis) < 1:
                raise ConfigError(
                    f"account [{account.alias}] does not have any AMIs: required at least one"
                )

            if len(account.post_share_tags) > 0:
                raise ConfigError(
                    f"post-share-tags not allowed here: account [{account.alias}]"
                )

            if not account.assume_role:
                raise ConfigError(f"assume-role must be specified on [{account.alias}]")

        self.create_role_arns()

    def create_role_arns(self) -> None:
        self.source_account.generate_role_arn()
        for account in self.target_accounts:
            account.generate_role_arn()

    def scan_regions(self) -> list[str]:
        """Return every region referenced by a target account or one of its groups.

        The list is sorted and computed once.
        """
        if self._regions:
            return self._regions

        regions: set[str] = set()
        for account in self.target_accounts:
            regions.update(account.regions)
            for selection in account.amis.values():
                regions.update(selection.regions)

        self._regions = sorted(regions)
        return self._regions


class ShareParams(BaseModel):
    """Run parameters gathered from the command line."""

    config: Config
    plan_file: str
    no_dry_run: bool = False
    share_snapshots: bool = False
