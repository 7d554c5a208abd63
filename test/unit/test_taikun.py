import subprocess
import unittest
from unittest.mock import ANY, patch

from openstack_taikun_provisioner.configuration import Configuration, Organization
from openstack_taikun_provisioner.credentials import OpenStackCredentials
from openstack_taikun_provisioner.exceptions import (
    ExternalCommandError,
    UnexpectedResponseError,
)
from openstack_taikun_provisioner.taikun import (
    create_openstack_cloud_credential,
    create_organization,
    mask_secrets,
)


CREDENTIALS = OpenStackCredentials(
    username="admin",
    password="s3cr3t",
    project_name="admin",
    user_domain_name="Default",
    project_domain_name="Default",
    auth_url="https://keystone.example.com:5000/v3",
    region_name="RegionOne",
)


def make_configuration(**kwargs) -> Configuration:
    parameters = {
        "project_name": "dev-project",
        "user_name": "dev-user",
        "application_credential_name": "dev-app-cred",
        "cloud_credential_name": "dev-taikun-cred",
        "credentials": CREDENTIALS,
        "quotas": {},
    }
    parameters.update(kwargs)
    return Configuration(**parameters)


class TestTaikun(unittest.TestCase):

    def setUp(self):
        self.patcher = patch("subprocess.check_output")
        self.mock_check_output = self.patcher.start()
        self.addCleanup(self.patcher.stop)
        self.mock_check_output.return_value = "4711\n"

    def test_organization_0(self):
        configuration = make_configuration(
            organization=Organization(name="acme", full_name="Acme Inc")
        )

        self.assertEqual(create_organization(configuration), "4711")
        self.mock_check_output.assert_called_once_with(
            [
                "taikun",
                "organization",
                "add",
                "acme",
                "-f",
                "Acme Inc",
                "-d",
                "100",
                "-I",
            ],
            env=ANY,
            text=True,
        )

    def test_organization_1(self):
        configuration = make_configuration(
            organization=Organization(
                name="acme",
                full_name="Acme Inc",
                discount_rate="80",
                email="info@acme.example",
                billing_email="billing@acme.example",
                address="Main Street 1",
                city="Berlin",
                country="Germany",
                phone="+49 30 123",
                vat_number="DE123",
            )
        )

        create_organization(configuration)

        args = self.mock_check_output.call_args.args[0]
        self.assertEqual(
            args[:8],
            ["taikun", "organization", "add", "acme", "-f", "Acme Inc", "-d", "80"],
        )
        for option, value in [
            ("-e", "info@acme.example"),
            ("--billing-email", "billing@acme.example"),
            ("-a", "Main Street 1"),
            ("--city", "Berlin"),
            ("--country", "Germany"),
            ("-p", "+49 30 123"),
            ("--vat-number", "DE123"),
        ]:
            self.assertEqual(args[args.index(option) + 1], value)
        self.assertEqual(args[-1], "-I")

    def test_cloud_credential_0(self):
        configuration = make_configuration()

        result = create_openstack_cloud_credential(
            configuration, "0", "dev-user", "password"
        )

        self.assertEqual(result, "4711")
        self.mock_check_output.assert_called_once_with(
            [
                "taikun",
                "cloud-credential",
                "openstack",
                "add",
                "dev-taikun-cred",
                "--url",
                "https://keystone.example.com:5000/v3",
                "--domain",
                "Default",
                "--region",
                "RegionOne",
                "--username",
                "dev-user",
                "--password",
                "password",
                "--public-network",
                "public",
                "--continent",
                "Europe",
                "--project",
                "dev-project",
                "-o",
                "0",
                "-I",
            ],
            env=ANY,
            text=True,
        )

    def test_cloud_credential_1(self):
        configuration = make_configuration(
            skip_tls=True,
            import_network=True,
            availability_zone="nova",
            volume_type="ssd",
            continent="us",
            public_network="external",
            taikun_command="/opt/bin/taikun",
            registry_environment={"TAIKUN_API_HOST": "api.taikun.example"},
        )

        create_openstack_cloud_credential(configuration, "42", "dev-user", "password")

        args = self.mock_check_output.call_args.args[0]
        self.assertEqual(args[0], "/opt/bin/taikun")
        assert "--skip-tls" in args
        assert "--import-network" in args
        self.assertEqual(args[args.index("--availability-zone") + 1], "nova")
        self.assertEqual(args[args.index("--volume-type") + 1], "ssd")
        self.assertEqual(args[args.index("--continent") + 1], "us")
        self.assertEqual(args[args.index("--public-network") + 1], "external")
        self.assertEqual(args[args.index("-o") + 1], "42")

        env = self.mock_check_output.call_args.kwargs["env"]
        self.assertEqual(env["TAIKUN_API_HOST"], "api.taikun.example")

    def test_failure_0(self):
        self.mock_check_output.side_effect = subprocess.CalledProcessError(
            3, ["taikun"]
        )

        with self.assertRaises(ExternalCommandError) as cm:
            create_openstack_cloud_credential(
                make_configuration(), "0", "dev-user", "password"
            )

        self.assertEqual(cm.exception.returncode, 3)
        self.assertEqual(cm.exception.command, "taikun cloud-credential openstack add")

    def test_failure_1(self):
        self.mock_check_output.side_effect = FileNotFoundError()

        with self.assertRaises(ExternalCommandError) as cm:
            create_organization(
                make_configuration(
                    organization=Organization(name="acme", full_name="Acme Inc")
                )
            )

        self.assertEqual(cm.exception.returncode, 127)

    def test_failure_2(self):
        self.mock_check_output.return_value = "Error: something\nwent wrong\n"

        with self.assertRaises(UnexpectedResponseError):
            create_openstack_cloud_credential(
                make_configuration(), "0", "dev-user", "password"
            )

        self.mock_check_output.return_value = ""

        with self.assertRaises(UnexpectedResponseError):
            create_openstack_cloud_credential(
                make_configuration(), "0", "dev-user", "password"
            )

    def test_mask_secrets_0(self):
        self.assertEqual(
            mask_secrets(["taikun", "--username", "user", "--password", "secret", "-I"]),
            ["taikun", "--username", "user", "--password", "****", "-I"],
        )
        self.assertEqual(mask_secrets(["--password"]), ["--password"])


if __name__ == "__main__":
    unittest.main()
