# SPDX-License-Identifier: AGPL-3.0-or-later

import secrets
import string
import sys

import click
from loguru import logger
import openstack
from tabulate import tabulate
import typer
from typing_extensions import Annotated
from typing import List, Optional

from openstack_taikun_provisioner import taikun
from openstack_taikun_provisioner.configuration import (
    DEFAULT_CONTINENT,
    DEFAULT_DISCOUNT_RATE,
    DEFAULT_ORGANIZATION_ID,
    DEFAULT_PASSWORD_LENGTH,
    DEFAULT_PUBLIC_NETWORK,
    DEFAULT_ROLES,
    FORWARD_APPLICATION_CREDENTIAL,
    FORWARD_SECRETS,
    FORWARD_USER,
    Configuration,
    Organization,
    RunContext,
    check_organization,
    get_settings,
    parse_quota_options,
    read_credentials_source,
    registry_environment,
    resolve_quotas,
)
from openstack_taikun_provisioner.exceptions import (
    ApplicationCredentialExistsError,
    ConfigurationError,
    ProvisioningError,
    StepError,
    UnexpectedResponseError,
)


def generate_password(password_length: int) -> str:
    return "".join(
        secrets.choice(string.ascii_letters + string.digits)
        for x in range(password_length)
    )


def find_domain(
    os_cloud: openstack.connection.Connection, domain_name: str
) -> openstack.identity.v3.domain.Domain:
    domain = os_cloud.identity.find_domain(domain_name)
    if not domain:
        raise ProvisioningError(f"domain {domain_name} does not exist")
    return domain


def ensure_organization(
    configuration: Configuration,
    os_cloud: openstack.connection.Connection,
    context: RunContext,
) -> None:
    organization = configuration.organization

    # NOTE: there is no existence check, re-running creates a duplicate or fails
    if organization:
        logger.info(
            f"{organization.name} - creating organization '{organization.full_name}'"
        )
        context.organization_id = taikun.create_organization(configuration)
        logger.info(
            f"{organization.name} - organization_id = {context.organization_id}"
        )
    elif configuration.organization_id is not None:
        context.organization_id = configuration.organization_id
        logger.info(f"using existing organization {context.organization_id}")
    else:
        context.organization_id = DEFAULT_ORGANIZATION_ID


def ensure_project(
    configuration: Configuration,
    os_cloud: openstack.connection.Connection,
    context: RunContext,
) -> None:
    name = configuration.project_name
    domain = find_domain(os_cloud, configuration.credentials.project_domain_name)

    project = os_cloud.identity.find_project(name, domain_id=domain.id)
    if project:
        logger.info(f"{name} - project exists, project_id = {project.id}")
    else:
        project = os_cloud.create_project(name=name, domain_id=domain.id)
        logger.info(f"{name} - project created, project_id = {project.id}")

    context.project = project


def ensure_user(
    configuration: Configuration,
    os_cloud: openstack.connection.Connection,
    context: RunContext,
) -> None:
    name = configuration.user_name
    domain = find_domain(os_cloud, configuration.credentials.user_domain_name)

    # The current password is needed later on to act as the user. An existing
    # password can not be read, so it is always replaced.
    password = generate_password(configuration.password_length)

    user = os_cloud.identity.find_user(name, domain_id=domain.id)
    if not user:
        user = os_cloud.create_user(
            name=name,
            password=password,
            default_project=context.project,
            domain_id=domain.id,
        )
        logger.info(f"{name} - user created, user_id = {user.id}")
    else:
        os_cloud.update_user(user, password=password)
        logger.info(f"{name} - user exists, password reset")

    logger.info(f"{name} - password = {password}")

    context.user = user
    context.password = password


def ensure_roles(
    configuration: Configuration,
    os_cloud: openstack.connection.Connection,
    context: RunContext,
) -> None:
    project = context.project
    user = context.user

    # cache roles
    CACHE_ROLES = {}
    for role in os_cloud.identity.roles():
        CACHE_ROLES[role.name] = role

    for role_name in DEFAULT_ROLES:
        if role_name not in CACHE_ROLES:
            raise ProvisioningError(f"role {role_name} does not exist")
        role = CACHE_ROLES[role_name]

        if os_cloud.identity.validate_user_has_project_role(
            project.id, user.id, role.id
        ):
            logger.info(
                f"{configuration.user_name} - already has role {role_name} "
                f"in {configuration.project_name}"
            )
        else:
            os_cloud.identity.assign_project_role_to_user(project.id, user.id, role.id)
            logger.info(
                f"{configuration.user_name} - assigned role {role_name} "
                f"in {configuration.project_name}"
            )


def set_quotas(
    configuration: Configuration,
    os_cloud: openstack.connection.Connection,
    context: RunContext,
) -> None:
    project = context.project
    quotas = configuration.quotas

    logger.info(f"{project.name} - set compute quota {quotas['compute']}")
    os_cloud.set_compute_quotas(project.id, **quotas["compute"])

    logger.info(f"{project.name} - set volume quota {quotas['volume']}")
    os_cloud.set_volume_quotas(project.id, **quotas["volume"])

    logger.info(f"{project.name} - set network quota {quotas['network']}")
    os_cloud.set_network_quotas(project.id, **quotas["network"])


def create_application_credential(
    configuration: Configuration,
    os_cloud: openstack.connection.Connection,
    context: RunContext,
) -> None:
    name = configuration.application_credential_name
    user_name = configuration.user_name

    # Application credentials can only be created by the user itself
    user_credentials = configuration.credentials.impersonate(
        user_name, context.password, configuration.project_name
    )
    user_connection = openstack.connect(**user_credentials.connect_args())

    # The secret of an existing application credential can not be retrieved
    for existing in user_connection.identity.application_credentials(
        user=context.user.id
    ):
        if existing.name == name:
            raise ApplicationCredentialExistsError(name, user_name)

    logger.info(f"{name} - creating application credential as user {user_name}")
    app_cred = user_connection.identity.create_application_credential(
        user=context.user.id,
        name=name,
        description=(
            f"Application credential for user '{user_name}' "
            f"in project '{configuration.project_name}'"
        ),
        roles=[{"name": role_name} for role_name in DEFAULT_ROLES],
    )

    if not getattr(app_cred, "id", None):
        raise UnexpectedResponseError(f"{name} - response without id")
    if not getattr(app_cred, "secret", None):
        raise UnexpectedResponseError(f"{name} - response without secret")

    context.application_credential_id = app_cred.id
    context.application_credential_secret = app_cred.secret

    logger.info(
        f"{name} - application_credential_id = {app_cred.id}, secret = {app_cred.secret}"
    )


def create_cloud_credential(
    configuration: Configuration,
    os_cloud: openstack.connection.Connection,
    context: RunContext,
) -> None:
    name = configuration.cloud_credential_name

    if configuration.forward_secret == FORWARD_APPLICATION_CREDENTIAL:
        username = context.application_credential_id
        password = context.application_credential_secret
    else:
        username = configuration.user_name
        password = context.password

    # NOTE: there is no existence check, re-running creates a duplicate or fails
    logger.info(f"{name} - creating Taikun cloud credential")
    context.cloud_credential_id = taikun.create_openstack_cloud_credential(
        configuration, context.organization_id, username, password
    )
    logger.info(f"{name} - cloud_credential_id = {context.cloud_credential_id}")


# The order is fixed, later steps depend on the results of earlier ones
STEPS = [
    ("organization", ensure_organization),
    ("project", ensure_project),
    ("user", ensure_user),
    ("roles", ensure_roles),
    ("quotas", set_quotas),
    ("application credential", create_application_credential),
    ("cloud credential", create_cloud_credential),
]


def provision(
    configuration: Configuration, os_cloud: openstack.connection.Connection
) -> RunContext:
    context = RunContext()

    for step_name, step in STEPS:
        logger.debug(f"{step_name} - starting")
        try:
            step(configuration, os_cloud, context)
        except Exception as e:
            raise StepError(step_name, e) from e

    return context


def summary(configuration: Configuration, context: RunContext) -> str:
    result = []

    if configuration.organization:
        result.append(
            ["organization", configuration.organization.name, context.organization_id]
        )
    elif configuration.organization_id is not None:
        result.append(["organization", "", context.organization_id])

    result.append(["project", configuration.project_name, context.project.id])
    result.append(["user", configuration.user_name, context.user.id])
    result.append(["password", context.password, ""])
    result.append(
        [
            "application_credential",
            configuration.application_credential_name,
            context.application_credential_id,
        ]
    )
    result.append(
        ["application_credential_secret", context.application_credential_secret, ""]
    )
    result.append(
        [
            "cloud_credential",
            configuration.cloud_credential_name,
            context.cloud_credential_id,
        ]
    )

    for group, values in configuration.quotas.items():
        for key, value in values.items():
            result.append([f"{group}[{key}]", value, ""])

    return tabulate(result, headers=["name", "value", "id"], tablefmt="psql")


def run(
    debug: Annotated[
        bool, typer.Option("--debug/--nodebug", help="Debug mode")
    ] = False,
    keystonerc: Annotated[
        Optional[str],
        typer.Option("--keystonerc", "-k", help="Admin keystonerc file to parse"),
    ] = None,
    config_file: Annotated[
        Optional[str],
        typer.Option(
            "--config-file",
            help="Env file with OS_*, TAIKUN_* and QUOTA_* variables",
        ),
    ] = None,
    project_name: Annotated[
        Optional[str], typer.Option("--project", "-p", help="Project to provision")
    ] = None,
    user_name: Annotated[
        Optional[str], typer.Option("--user", "-u", help="User to provision")
    ] = None,
    application_credential_name: Annotated[
        Optional[str],
        typer.Option(
            "--application-credential", "-a", help="Application credential name"
        ),
    ] = None,
    cloud_credential_name: Annotated[
        Optional[str],
        typer.Option("--cloud-credential", "-n", help="Taikun cloud credential name"),
    ] = None,
    continent: Annotated[
        Optional[str], typer.Option("--continent", "-c", help="Taikun continent")
    ] = None,
    public_network: Annotated[
        Optional[str], typer.Option("--public-network", help="Public network")
    ] = None,
    availability_zone: Annotated[
        Optional[str], typer.Option("--availability-zone", help="Availability zone")
    ] = None,
    volume_type: Annotated[
        Optional[str], typer.Option("--volume-type", help="Volume type")
    ] = None,
    skip_tls: Annotated[
        Optional[bool],
        typer.Option("--skip-tls/--noskip-tls", help="Skip TLS verification in Taikun"),
    ] = None,
    import_network: Annotated[
        Optional[bool],
        typer.Option(
            "--import-network/--noimport-network", help="Import network in Taikun"
        ),
    ] = None,
    organization_id: Annotated[
        Optional[str], typer.Option("--org-id", help="Existing Taikun organization ID")
    ] = None,
    organization_name: Annotated[
        Optional[str],
        typer.Option("--org-name", help="Create a Taikun organization with this name"),
    ] = None,
    organization_full_name: Annotated[
        Optional[str], typer.Option("--org-full-name", help="Organization full name")
    ] = None,
    organization_email: Annotated[
        Optional[str], typer.Option("--org-email", help="Organization email")
    ] = None,
    organization_billing_email: Annotated[
        Optional[str],
        typer.Option("--org-billing-email", help="Organization billing email"),
    ] = None,
    organization_address: Annotated[
        Optional[str], typer.Option("--org-address", help="Organization address")
    ] = None,
    organization_city: Annotated[
        Optional[str], typer.Option("--org-city", help="Organization city")
    ] = None,
    organization_country: Annotated[
        Optional[str], typer.Option("--org-country", help="Organization country")
    ] = None,
    organization_phone: Annotated[
        Optional[str], typer.Option("--org-phone", help="Organization phone")
    ] = None,
    organization_vat_number: Annotated[
        Optional[str], typer.Option("--org-vat-number", help="Organization VAT number")
    ] = None,
    organization_discount_rate: Annotated[
        Optional[str],
        typer.Option("--org-discount-rate", help="Organization discount rate"),
    ] = None,
    forward_secret: Annotated[
        Optional[str],
        typer.Option(
            "--forward-secret",
            help="Secret registered in Taikun: user or application-credential",
        ),
    ] = None,
    password_length: Annotated[
        Optional[int], typer.Option("--password-length", help="Password length")
    ] = None,
    quota: Annotated[
        Optional[List[str]],
        typer.Option("--quota", help="Quota override NAME=VALUE, e.g. cores=200"),
    ] = None,
) -> None:

    if debug:
        level = "DEBUG"
    else:
        level = "INFO"

    log_fmt = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
        "<level>{message}</level>"
    )

    logger.remove()
    logger.add(sys.stdout, format=log_fmt, level=level, colorize=True)

    # read configuration
    settings = get_settings()

    try:
        missing = [
            option
            for option, value in [
                ("--project", project_name),
                ("--user", user_name),
                ("--application-credential", application_credential_name),
                ("--cloud-credential", cloud_credential_name),
            ]
            if not value
        ]
        if missing:
            raise ConfigurationError(f"missing required {', '.join(missing)}")

        organization = None
        if organization_name:
            organization = Organization(
                name=organization_name,
                full_name=organization_full_name,
                discount_rate=organization_discount_rate
                or settings.get("org_discount_rate", DEFAULT_DISCOUNT_RATE),
                email=organization_email,
                billing_email=organization_billing_email,
                address=organization_address,
                city=organization_city,
                country=organization_country,
                phone=organization_phone,
                vat_number=organization_vat_number,
            )
        check_organization(organization_id, organization)

        forward_secret = forward_secret or settings.get("forward_secret", FORWARD_USER)
        if forward_secret not in FORWARD_SECRETS:
            raise ConfigurationError(
                f"--forward-secret must be one of {', '.join(FORWARD_SECRETS)}"
            )

        # explicit --flag/--noflag wins over settings
        if skip_tls is None:
            skip_tls = bool(settings.get("skip_tls", False))
        if import_network is None:
            import_network = bool(settings.get("import_network", False))

        if password_length is None:
            try:
                password_length = int(
                    settings.get("password_length", DEFAULT_PASSWORD_LENGTH)
                )
            except ValueError:
                raise ConfigurationError("password_length must be an integer")
        if password_length < 1:
            raise ConfigurationError(
                f"--password-length must be at least 1, got {password_length}"
            )

        credentials, variables = read_credentials_source(keystonerc, config_file)

        configuration = Configuration(
            project_name=project_name,
            user_name=user_name,
            application_credential_name=application_credential_name,
            cloud_credential_name=cloud_credential_name,
            credentials=credentials,
            quotas=resolve_quotas(settings, variables, parse_quota_options(quota or [])),
            registry_environment=registry_environment(variables),
            organization=organization,
            organization_id=organization_id,
            continent=continent or settings.get("continent", DEFAULT_CONTINENT),
            public_network=public_network
            or settings.get("public_network", DEFAULT_PUBLIC_NETWORK),
            availability_zone=availability_zone
            or settings.get("availability_zone", None),
            volume_type=volume_type or settings.get("volume_type", None),
            skip_tls=skip_tls,
            import_network=import_network,
            forward_secret=forward_secret,
            password_length=password_length,
            taikun_command=settings.get("taikun_command", "taikun"),
        )
    except ConfigurationError as e:
        logger.error(str(e))
        sys.exit(1)

    try:
        # Connect to the OpenStack environment
        os_cloud = openstack.connect(**configuration.credentials.connect_args())
        context = provision(configuration, os_cloud)
    except (ProvisioningError, openstack.exceptions.SDKException) as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info("Done")
    print(summary(configuration, context))


app = typer.Typer()
app.command()(run)


def main() -> None:
    # usage errors exit with 1 like every other configuration error
    command = typer.main.get_command(app)
    try:
        command.main(standalone_mode=False)
    except click.exceptions.UsageError as e:
        logger.error(e.format_message())
        sys.exit(1)
    except click.exceptions.Abort:
        sys.exit(1)


if __name__ == "__main__":
    main()
