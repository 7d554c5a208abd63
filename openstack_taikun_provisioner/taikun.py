# SPDX-License-Identifier: AGPL-3.0-or-later

import os
import subprocess
from typing import List

from loguru import logger

from openstack_taikun_provisioner.configuration import Configuration
from openstack_taikun_provisioner.exceptions import (
    ExternalCommandError,
    UnexpectedResponseError,
)

# options whose value is never written to the log
SECRET_OPTIONS = ["--password"]


def mask_secrets(command: List[str]) -> List[str]:
    result = list(command)
    for i, part in enumerate(command[:-1]):
        if part in SECRET_OPTIONS:
            result[i + 1] = "****"
    return result


def run_taikun(configuration: Configuration, name: str, arguments: List[str]) -> str:
    """Run a taikun subcommand in ID-only mode and return the printed ID."""

    command = [configuration.taikun_command] + arguments + ["-I"]
    logger.debug(f"{name} - running {' '.join(mask_secrets(command))}")

    env = dict(os.environ)
    env.update(configuration.registry_environment)

    # stderr is not captured, the error messages of taikun stay visible
    try:
        output = subprocess.check_output(command, env=env, text=True)
    except FileNotFoundError:
        raise ExternalCommandError(name, 127)
    except subprocess.CalledProcessError as e:
        raise ExternalCommandError(name, e.returncode)

    parts = output.split()
    if len(parts) != 1:
        raise UnexpectedResponseError(f"{name} - expected an ID, got '{output.strip()}'")

    return parts[0]


def create_organization(configuration: Configuration) -> str:
    organization = configuration.organization
    arguments = [
        "organization",
        "add",
        organization.name,
        "-f",
        organization.full_name,
        "-d",
        str(organization.discount_rate),
    ]

    optional = [
        ("-e", organization.email),
        ("--billing-email", organization.billing_email),
        ("-a", organization.address),
        ("--city", organization.city),
        ("--country", organization.country),
        ("-p", organization.phone),
        ("--vat-number", organization.vat_number),
    ]
    for option, value in optional:
        if value:
            arguments += [option, value]

    return run_taikun(configuration, "taikun organization add", arguments)


def create_openstack_cloud_credential(
    configuration: Configuration, organization_id: str, username: str, password: str
) -> str:
    credentials = configuration.credentials
    arguments = [
        "cloud-credential",
        "openstack",
        "add",
        configuration.cloud_credential_name,
        "--url",
        credentials.auth_url,
        "--domain",
        credentials.user_domain_name,
        "--region",
        credentials.region_name,
        "--username",
        username,
        "--password",
        password,
        "--public-network",
        configuration.public_network,
        "--continent",
        configuration.continent,
        "--project",
        configuration.project_name,
        "-o",
        str(organization_id),
    ]

    if configuration.skip_tls:
        arguments.append("--skip-tls")
    if configuration.availability_zone:
        arguments += ["--availability-zone", configuration.availability_zone]
    if configuration.volume_type:
        arguments += ["--volume-type", configuration.volume_type]
    if configuration.import_network:
        arguments.append("--import-network")

    return run_taikun(
        configuration, "taikun cloud-credential openstack add", arguments
    )
