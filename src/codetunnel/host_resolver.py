"""Host resolution module.

Turns the user-supplied host argument into an SSH target. Plain hosts
(``dev-box``, ``user@10.0.0.5``, an ssh_config alias) pass through untouched.
Cloud-prefixed hosts are looked up with the provider's CLI:

- ``gcp:<instance>`` asks ``gcloud compute ssh --dry-run`` for the ssh command
  it would run, and lifts the IP and the extra ssh flags out of it.
- ``azure:<resource-group>/<vm-name>`` asks ``az vm show --show-details`` for
  the VM's public IP.

Each lookup is a single CLI invocation; there are no retries.

Public API:
    ResolvedHost: Resolution result
    HostResolver: Resolver with pluggable provider prefixes
"""

import ipaddress
import logging
from collections.abc import Callable
from dataclasses import dataclass

from codetunnel.command_runner import CommandRunner, SubprocessRunner, format_command
from codetunnel.errors import ResolutionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedHost:
    """SSH target produced by HostResolver."""

    address: str
    extra_flags: str = ""


def is_valid_ip(candidate: str) -> bool:
    """Check if string is a valid IPv4 or IPv6 address.

    Example:
        >>> is_valid_ip("10.0.0.5")
        True
        >>> is_valid_ip("256.1.1.1")
        False
    """
    try:
        ipaddress.ip_address(candidate)
        return True
    except ValueError:
        return False


class HostResolver:
    """Resolve host specifiers, delegating to cloud CLIs by prefix.

    Example:
        >>> resolver = HostResolver()
        >>> resolver.resolve("my-host")
        ResolvedHost(address='my-host', extra_flags='')
    """

    GCP_PREFIX = "gcp:"
    AZURE_PREFIX = "azure:"

    def __init__(self, runner: CommandRunner | None = None):
        self.runner = runner or SubprocessRunner()
        self._providers: dict[str, Callable[[str], ResolvedHost]] = {
            self.GCP_PREFIX: self.resolve_gcp,
            self.AZURE_PREFIX: self.resolve_azure,
        }

    def resolve(self, host_specifier: str) -> ResolvedHost:
        """Resolve a host specifier.

        Args:
            host_specifier: Host as typed by the user

        Returns:
            ResolvedHost with the address and any extra ssh flags

        Raises:
            ResolutionError: If a cloud lookup fails
        """
        host = host_specifier.strip()
        if not host:
            raise ResolutionError("host must not be empty")

        for prefix, provider in self._providers.items():
            if host.startswith(prefix):
                return provider(host[len(prefix) :])

        return ResolvedHost(address=host)

    def resolve_gcp(self, instance: str) -> ResolvedHost:
        """Resolve a GCP instance through ``gcloud compute ssh --dry-run``.

        The dry run prints the ssh command gcloud would execute, e.g.
        ``/usr/bin/ssh -t -i ~/.ssh/google_compute_engine user@35.1.2.3``.
        Everything between the ssh binary and the final ``user@ip`` token is
        kept as extra ssh flags.

        Raises:
            ResolutionError: If gcloud fails or its output cannot be parsed
        """
        cmd = ["gcloud", "compute", "ssh", "--dry-run", instance]
        command = format_command(cmd)

        logger.debug(f"Resolving GCP instance {instance}")
        result = self.runner.run(cmd)
        output = result.output
        if result.returncode != 0:
            raise ResolutionError(
                f"'{command}' failed (exit code {result.returncode}): {output.strip()}",
                command=command,
                output=output,
            )

        return self.parse_ssh_command_line(output, command=command)

    @staticmethod
    def parse_ssh_command_line(output: str, command: str | None = None) -> ResolvedHost:
        """Parse a rendered ssh command line into address and flags.

        Example:
            >>> HostResolver.parse_ssh_command_line("/usr/bin/ssh -i key.pem user@10.0.0.5")
            ResolvedHost(address='10.0.0.5', extra_flags='-i key.pem')
        """
        tokens = output.split()
        if len(tokens) < 2:
            raise ResolutionError(
                f"unexpected output for '{command}' command: {output.strip()!r}",
                command=command,
                output=output,
            )

        # Slice off the ssh binary and the '<user>@<ip>' suffix.
        extra_flags = " ".join(tokens[1:-1])

        user_ip = tokens[-1]
        ip = user_ip.rsplit("@", 1)[-1].strip()

        if not is_valid_ip(ip):
            raise ResolutionError(
                f"parsed invalid ip address {ip!r}", command=command, output=output
            )

        logger.debug(f"Resolved {user_ip} to {ip} with flags '{extra_flags}'")
        return ResolvedHost(address=ip, extra_flags=extra_flags)

    def resolve_azure(self, target: str) -> ResolvedHost:
        """Resolve an Azure VM given as ``<resource-group>/<vm-name>``.

        Raises:
            ResolutionError: If the target is malformed, az fails, or the VM
                has no valid public IP
        """
        resource_group, sep, vm_name = target.partition("/")
        if not sep or not resource_group or not vm_name or "/" in vm_name:
            raise ResolutionError(
                f"invalid Azure target {target!r}: expected azure:<resource-group>/<vm-name>"
            )

        cmd = [
            "az",
            "vm",
            "show",
            "--show-details",
            "--resource-group",
            resource_group,
            "--name",
            vm_name,
            "--query",
            "publicIps",
            "--output",
            "tsv",
        ]
        command = format_command(cmd)

        logger.debug(f"Resolving Azure VM {vm_name} in {resource_group}")
        result = self.runner.run(cmd)
        if result.returncode != 0:
            raise ResolutionError(
                f"'{command}' failed (exit code {result.returncode}): {result.stderr.strip()}",
                command=command,
                output=result.output,
            )

        ip = result.stdout.strip()
        if not is_valid_ip(ip):
            raise ResolutionError(
                f"VM {vm_name} has no valid public IP address (got {ip!r})",
                command=command,
                output=result.output,
            )

        return ResolvedHost(address=ip)


__all__ = ["HostResolver", "ResolvedHost", "is_valid_ip"]
