"""Load the configuration file.

The file is a Jinja2 template rendered against the process environment before it
is parsed as YAML, so account ids and role names can be injected without writing
them into the file::

    source-account:
      id: "{{ SOURCE_ACCOUNT_ID }}"
      alias: registry
      assume-role: ami-share
"""

import os
import re

from jinja2 import Environment, StrictUndefined, TemplateError
from pydantic import ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

import core_logging as log

from .errors import ConfigError
from .models import Config

# Go-template style references: {{ .NAME }}
GO_TEMPLATE_REF = re.compile(r"{{\s*\.([A-Za-z_][A-Za-z0-9_]*)")


def get_environment_vars() -> dict[str, str]:
    return dict(os.environ)


def render_config(raw: str, env: dict[str, str] | None = None) -> str:
    """Render the raw config text against the environment.

    :param raw: The config file contents
    :type raw: str
    :param env: Variables available to the template.  Defaults to the process
        environment.
    :type env: dict[str, str] | None
    :return: The rendered config text
    :rtype: str
    :raises ConfigError: If the template is malformed or references an undefined
        variable
    """
    if env is None:
        env = get_environment_vars()

    raw = GO_TEMPLATE_REF.sub(r"{{ \1", raw)

    try:
        environment = Environment(undefined=StrictUndefined, keep_trailing_newline=True)
        return environment.from_string(raw).render(env)
    except TemplateError as e:
        raise ConfigError(f"Failed to render config template: {e}") from e


def parse_config(text: str) -> Config:
    """Parse rendered YAML text into a Config.

    Every scalar is loaded as its source text, so unquoted account ids keep their
    leading zeros and values such as ``true`` or ``1.10`` are compared verbatim.

    :raises ConfigError: If the YAML is malformed or does not match the config
        schema
    """
    try:
        data = YAML(typ="base").load(text)
    except YAMLError as e:
        raise ConfigError(f"Failed to parse config YAML: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(
            "Config must be a mapping with source-account and target-accounts"
        )

    try:
        return Config(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config: {e}") from e


def load_config(path: str, env: dict[str, str] | None = None) -> Config:
    """Read, render and parse the config file.

    The returned Config has not been validated yet, call
    ``Config.validate_config()``.

    :param path: Path to the config file
    :type path: str
    :param env: Template variables.  Defaults to the process environment.
    :type env: dict[str, str] | None
    :return: The parsed config
    :rtype: Config
    :raises ConfigError: If any step fails
    """
    log.trace("Loading config from {}", path)

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e

    resolved = render_config(raw, env)

    log.debug("Resolved config:\n{}", resolved)

    return parse_config(resolved)
