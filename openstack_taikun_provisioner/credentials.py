# SPDX-License-Identifier: AGPL-3.0-or-later

import dataclasses
import io
import os
from typing import Dict, Optional

from dotenv import dotenv_values
from dotenv.parser import parse_stream
from loguru import logger

from openstack_taikun_provisioner.exceptions import ConfigurationError

# Admin variables that must be present in a credentials file
REQUIRED_VARIABLES = {
    "OS_USERNAME": "username",
    "OS_PASSWORD": "password",
    "OS_PROJECT_NAME": "project_name",
    "OS_USER_DOMAIN_NAME": "user_domain_name",
    "OS_PROJECT_DOMAIN_NAME": "project_domain_name",
    "OS_AUTH_URL": "auth_url",
    "OS_REGION_NAME": "region_name",
}


@dataclasses.dataclass(frozen=True)
class OpenStackCredentials:
    username: str
    password: str
    project_name: str
    user_domain_name: str
    project_domain_name: str
    auth_url: str
    region_name: str
    cacert: Optional[str] = None

    def connect_args(self) -> dict:
        """Keyword arguments for openstack.connect().

        Configuration files and OS_* environment variables are not consulted,
        the connection is made with exactly these credentials.
        """
        args = {
            "auth": {
                "auth_url": self.auth_url,
                "username": self.username,
                "password": self.password,
                "project_name": self.project_name,
                "user_domain_name": self.user_domain_name,
                "project_domain_name": self.project_domain_name,
            },
            "region_name": self.region_name,
            "load_yaml_config": False,
            "load_envvars": False,
        }

        if self.cacert:
            args["cacert"] = self.cacert

        return args

    def impersonate(
        self, username: str, password: str, project_name: str
    ) -> "OpenStackCredentials":
        return dataclasses.replace(
            self, username=username, password=password, project_name=project_name
        )


def parse_env_file(path: str, exports_only: bool = False) -> Dict[str, str]:
    """Read KEY=value assignments from a shell environment file.

    Parsing, quoting, comments and ${VAR} interpolation are handled by
    python-dotenv. Variables not defined in the file are interpolated from
    the environment. With exports_only only `export KEY=value` lines are
    used, which is how openrc/keystonerc files are written.
    """
    if not os.path.isfile(path):
        raise ConfigurationError(f"file {path} not found")

    try:
        with open(path, "r", encoding="utf-8") as fp:
            content = fp.read()
    except UnicodeDecodeError as e:
        raise ConfigurationError(f"file {path} is not valid UTF-8: {e.reason}")

    values = dotenv_values(stream=io.StringIO(content))

    if exports_only:
        exported = set()
        for binding in parse_stream(io.StringIO(content)):
            statement = binding.original.string.split()
            if binding.key and statement and statement[0] == "export":
                exported.add(binding.key)
        values = {k: v for k, v in values.items() if k in exported}

    # keys without an assignment have no value
    return {k: v for k, v in values.items() if v is not None}


def load_admin_credentials(
    variables: Dict[str, str], source: str
) -> OpenStackCredentials:
    missing = [x for x in REQUIRED_VARIABLES if not variables.get(x)]
    if missing:
        raise ConfigurationError(f"{source} - missing {', '.join(missing)}")

    credentials = OpenStackCredentials(
        cacert=variables.get("OS_CACERT") or None,
        **{
            attribute: variables[variable]
            for variable, attribute in REQUIRED_VARIABLES.items()
        },
    )

    logger.info(
        f"{source} - admin {credentials.username} in project "
        f"{credentials.project_name}, auth_url = {credentials.auth_url}, "
        f"region = {credentials.region_name}"
    )

    return credentials
