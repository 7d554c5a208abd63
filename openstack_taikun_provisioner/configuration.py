# SPDX-License-Identifier: AGPL-3.0-or-later

import dataclasses
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from dynaconf import Dynaconf

from openstack_taikun_provisioner.credentials import (
    OpenStackCredentials,
    load_admin_credentials,
    parse_env_file,
)
from openstack_taikun_provisioner.exceptions import ConfigurationError

# Roles required by the provisioned user and its application credential
DEFAULT_ROLES = ["member", "load-balancer_member"]

DEFAULT_CONTINENT = "Europe"
DEFAULT_DISCOUNT_RATE = "100"
DEFAULT_ORGANIZATION_ID = "0"
DEFAULT_PASSWORD_LENGTH = 16
DEFAULT_PUBLIC_NETWORK = "public"

# Which secret is registered with the Taikun cloud credential
FORWARD_USER = "user"
FORWARD_APPLICATION_CREDENTIAL = "application-credential"
FORWARD_SECRETS = [FORWARD_USER, FORWARD_APPLICATION_CREDENTIAL]

# environment variables taken over in --config-file mode
SOURCED_PREFIXES = ("OS_", "TAIKUN_", "QUOTA_")

# configuration name -> (quota group, quota name used by the API, default)
QUOTAS = {
    "cores": ("compute", "cores", 100),
    "ram": ("compute", "ram", 512000),
    "instances": ("compute", "instances", 50),
    "server_groups": ("compute", "server_groups", 1000),
    "server_group_members": ("compute", "server_group_members", 1000),
    "volumes": ("volume", "volumes", 200),
    "snapshots": ("volume", "snapshots", 200),
    "gigabytes": ("volume", "gigabytes", 10000),
    "networks": ("network", "network", 100),
    "subnets": ("network", "subnet", 100),
    "ports": ("network", "port", 500),
    "routers": ("network", "router", 20),
    "floating_ips": ("network", "floatingip", 20),
    "secgroups": ("network", "security_group", 100),
    "secgroup_rules": ("network", "security_group_rule", 1000),
}


def get_settings():
    # NOTE: settings.toml is expected in the top level directory of the repository
    rootdir = Path(__file__).parents[1]
    settings = Dynaconf(
        envvar_prefix="OTP",
        root_path=rootdir,
        settings_files=["settings.toml"],
    )
    return settings


@dataclasses.dataclass(frozen=True)
class Organization:
    name: str
    full_name: str
    discount_rate: str = DEFAULT_DISCOUNT_RATE
    email: Optional[str] = None
    billing_email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None
    vat_number: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class Configuration:
    project_name: str
    user_name: str
    application_credential_name: str
    cloud_credential_name: str
    credentials: OpenStackCredentials
    quotas: Dict[str, Dict[str, int]]
    registry_environment: Dict[str, str] = dataclasses.field(default_factory=dict)
    organization: Optional[Organization] = None
    organization_id: Optional[str] = None
    continent: str = DEFAULT_CONTINENT
    public_network: str = DEFAULT_PUBLIC_NETWORK
    availability_zone: Optional[str] = None
    volume_type: Optional[str] = None
    skip_tls: bool = False
    import_network: bool = False
    forward_secret: str = FORWARD_USER
    password_length: int = DEFAULT_PASSWORD_LENGTH
    taikun_command: str = "taikun"


@dataclasses.dataclass
class RunContext:
    """Everything produced by the provisioning steps of a single run."""

    organization_id: Optional[str] = None
    project: Any = None
    user: Any = None
    password: Optional[str] = None
    application_credential_id: Optional[str] = None
    application_credential_secret: Optional[str] = None
    cloud_credential_id: Optional[str] = None


def read_credentials_source(
    keystonerc: Optional[str], config_file: Optional[str]
) -> Tuple[OpenStackCredentials, Dict[str, str]]:
    """Load the admin credentials from exactly one of the two file types.

    Returns the credentials and all variables of the file. A keystonerc only
    contributes its exported OS_* variables. A config file is treated like a
    sourced file: it additionally carries TAIKUN_* and QUOTA_* variables, and
    such variables already set in the environment count unless the file
    overrides them.
    """
    if keystonerc and config_file:
        raise ConfigurationError("use either --keystonerc or --config-file, not both")

    if keystonerc:
        variables = {
            k: v
            for k, v in parse_env_file(keystonerc, exports_only=True).items()
            if k.startswith("OS_")
        }
        return load_admin_credentials(variables, keystonerc), variables

    if config_file:
        variables = {
            k: v for k, v in os.environ.items() if k.startswith(SOURCED_PREFIXES)
        }
        variables.update(parse_env_file(config_file))
        return load_admin_credentials(variables, config_file), variables

    raise ConfigurationError("either --keystonerc or --config-file is required")


def _to_int(name: str, value: Any) -> int:
    try:
        return int(str(value))
    except ValueError:
        raise ConfigurationError(f"quota {name} must be an integer, got '{value}'")


def parse_quota_options(options: List[str]) -> Dict[str, str]:
    result = {}
    for option in options:
        name, sep, value = option.partition("=")
        name = name.strip().lower().replace("-", "_")
        if not sep or name not in QUOTAS:
            raise ConfigurationError(
                f"invalid quota '{option}', expected NAME=VALUE with NAME one of "
                f"{', '.join(QUOTAS)}"
            )
        result[name] = value.strip()
    return result


def resolve_quotas(
    settings,
    variables: Dict[str, str],
    overrides: Optional[Dict[str, str]] = None,
) -> Dict[str, Dict[str, int]]:
    """Compute the quota values per quota group.

    Precedence from lowest to highest: defaults, settings (settings.toml or
    OTP_QUOTA_* environment variables), QUOTA_* variables of the config
    file or the environment, command line overrides.
    """
    overrides = overrides or {}
    result: Dict[str, Dict[str, int]] = {"compute": {}, "volume": {}, "network": {}}

    for name, (group, key, default) in QUOTAS.items():
        value = settings.get(f"quota_{name}", default)
        value = variables.get(f"QUOTA_{name.upper()}", value)
        value = overrides.get(name, value)
        result[group][key] = _to_int(name, value)

    return result


def registry_environment(variables: Dict[str, str]) -> Dict[str, str]:
    return {k: v for k, v in variables.items() if k.startswith("TAIKUN_")}


def check_organization(
    organization_id: Optional[str], organization: Optional[Organization]
) -> None:
    if not organization:
        return

    if not organization.full_name:
        raise ConfigurationError("--org-name requires --org-full-name")

    if organization_id is not None:
        raise ConfigurationError("--org-name can not be combined with --org-id")
