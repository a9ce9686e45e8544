"""
Inbound firewall rules for Velociraptor ports.

Each platform has a primary and a fallback mechanism. Failures never abort a
deployment: they are reported as a FirewallResult with success=False.
"""

import logging
import re
import shlex
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from ..error_handling import FirewallWarning
from ..system import CommandRunner, is_admin, os_family, run_command

logger = logging.getLogger(__name__)

SOCKETFILTERFW = "/usr/libexec/ApplicationFirewall/socketfilterfw"


@dataclass
class FirewallResult:
    """Outcome of a firewall operation.

    Attributes:
        success: Whether the rule is in the requested state
        rule_name: Name of the rule
        port: TCP port (None for removals by name)
        mechanism: Mechanism that applied the change
        message: Human-readable outcome
    """
    success: bool
    rule_name: str
    port: Optional[int] = None
    mechanism: Optional[str] = None
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "rule_name": self.rule_name,
            "port": self.port,
            "mechanism": self.mechanism,
            "message": self.message,
        }


class FirewallMechanism(ABC):
    """A way of managing named inbound TCP rules."""

    def __init__(self, runner: CommandRunner = run_command):
        self.runner = runner

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def has_rule(self, rule_name: str) -> bool:
        pass

    @abstractmethod
    def add_rule(self, port: int, rule_name: str) -> None:
        pass

    @abstractmethod
    def remove_rule(self, rule_name: str) -> None:
        pass

    def _run(self, args: Sequence[str], action: str, ok_codes: Sequence[int] = (0,)) -> subprocess.CompletedProcess:
        result = self.runner(list(args))
        if result.returncode not in ok_codes:
            output = f"{result.stdout or ''} {result.stderr or ''}".strip()
            raise FirewallWarning(f"{self.name}: failed to {action}: {output[:200]}")
        return result


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class PowerShellFirewall(FirewallMechanism):
    """Windows NetSecurity cmdlets (New-NetFirewallRule)."""

    @property
    def name(self) -> str:
        return "netsecurity"

    def _ps(self, script: str) -> list[str]:
        return ["powershell", "-NoProfile", "-NonInteractive", "-Command", script]

    def has_rule(self, rule_name: str) -> bool:
        script = (
            f"if (Get-NetFirewallRule -DisplayName {_ps_quote(rule_name)} "
            "-ErrorAction SilentlyContinue) { exit 0 } else { exit 1 }"
        )
        result = self._run(self._ps(script), "query rules", ok_codes=(0, 1))
        return result.returncode == 0

    def add_rule(self, port: int, rule_name: str) -> None:
        script = (
            f"New-NetFirewallRule -DisplayName {_ps_quote(rule_name)} -Direction Inbound "
            f"-Protocol TCP -LocalPort {port} -Action Allow -ErrorAction Stop | Out-Null"
        )
        self._run(self._ps(script), f"add rule '{rule_name}'")

    def remove_rule(self, rule_name: str) -> None:
        script = (
            f"Remove-NetFirewallRule -DisplayName {_ps_quote(rule_name)} "
            "-ErrorAction SilentlyContinue"
        )
        self._run(self._ps(script), f"remove rule '{rule_name}'")


class NetshFirewall(FirewallMechanism):
    """Windows `netsh advfirewall` fallback."""

    @property
    def name(self) -> str:
        return "netsh"

    def has_rule(self, rule_name: str) -> bool:
        result = self._run(
            ["netsh", "advfirewall", "firewall", "show", "rule", f"name={rule_name}"],
            "query rules",
            ok_codes=(0, 1),
        )
        return result.returncode == 0

    def add_rule(self, port: int, rule_name: str) -> None:
        self._run(
            [
                "netsh", "advfirewall", "firewall", "add", "rule",
                f"name={rule_name}", "dir=in", "action=allow",
                "protocol=TCP", f"localport={port}",
            ],
            f"add rule '{rule_name}'",
        )

    def remove_rule(self, rule_name: str) -> None:
        self._run(
            ["netsh", "advfirewall", "firewall", "delete", "rule", f"name={rule_name}"],
            f"remove rule '{rule_name}'",
            ok_codes=(0, 1),
        )


class UfwFirewall(FirewallMechanism):
    """Uncomplicated Firewall (ufw) with the rule name as comment."""

    _NUMBERED_RE = re.compile(r"^\[\s*(\d+)\]")

    @property
    def name(self) -> str:
        return "ufw"

    def _status(self) -> str:
        return self._run(["ufw", "status", "numbered"], "query rules").stdout or ""

    def _rule_numbers(self, rule_name: str) -> list[int]:
        numbers = []
        for line in self._status().splitlines():
            match = self._NUMBERED_RE.match(line.strip())
            if match and line.rstrip().endswith(f"# {rule_name}"):
                numbers.append(int(match.group(1)))
        return numbers

    def has_rule(self, rule_name: str) -> bool:
        return bool(self._rule_numbers(rule_name))

    def add_rule(self, port: int, rule_name: str) -> None:
        self._run(
            ["ufw", "allow", "proto", "tcp", "to", "any", "port", str(port), "comment", rule_name],
            f"add rule '{rule_name}'",
        )

    def remove_rule(self, rule_name: str) -> None:
        # Delete from the highest number down so numbering stays valid
        for number in sorted(self._rule_numbers(rule_name), reverse=True):
            self._run(["ufw", "--force", "delete", str(number)], f"remove rule '{rule_name}'")


class IptablesFirewall(FirewallMechanism):
    """iptables INPUT rule tagged with a comment match."""

    @property
    def name(self) -> str:
        return "iptables"

    def _matching_rules(self, rule_name: str) -> list[list[str]]:
        output = self._run(["iptables", "-S", "INPUT"], "list rules").stdout or ""
        rules = []
        for line in output.splitlines():
            parts = shlex.split(line)
            if "--comment" in parts:
                index = parts.index("--comment")
                if index + 1 < len(parts) and parts[index + 1] == rule_name:
                    rules.append(parts)
        return rules

    def has_rule(self, rule_name: str) -> bool:
        return bool(self._matching_rules(rule_name))

    def add_rule(self, port: int, rule_name: str) -> None:
        self._run(
            [
                "iptables", "-I", "INPUT", "-p", "tcp", "--dport", str(port),
                "-m", "comment", "--comment", rule_name, "-j", "ACCEPT",
            ],
            f"add rule '{rule_name}'",
        )

    def remove_rule(self, rule_name: str) -> None:
        for parts in self._matching_rules(rule_name):
            # `-A INPUT ...` from -S output becomes `-D INPUT ...`
            self._run(["iptables", "-D", *parts[1:]], f"remove rule '{rule_name}'")


class ApplicationFirewall(FirewallMechanism):
    """macOS application firewall; rules are per binary, not per port."""

    def __init__(self, binary_path: Optional[Path], runner: CommandRunner = run_command):
        super().__init__(runner)
        self.binary_path = binary_path

    @property
    def name(self) -> str:
        return "socketfilterfw"

    def _require_binary(self) -> str:
        if not self.binary_path:
            raise FirewallWarning(f"{self.name}: binary path required for application rules")
        return str(self.binary_path)

    def has_rule(self, rule_name: str) -> bool:
        binary = self._require_binary()
        output = self._run([SOCKETFILTERFW, "--listapps"], "list applications").stdout or ""
        return binary in output

    def add_rule(self, port: int, rule_name: str) -> None:
        binary = self._require_binary()
        self._run([SOCKETFILTERFW, "--add", binary], f"add {binary}")
        self._run([SOCKETFILTERFW, "--unblockapp", binary], f"unblock {binary}")

    def remove_rule(self, rule_name: str) -> None:
        binary = self._require_binary()
        self._run([SOCKETFILTERFW, "--remove", binary], f"remove {binary}")


def default_mechanisms(
    binary_path: Optional[Path] = None,
    runner: CommandRunner = run_command,
) -> list[FirewallMechanism]:
    """Primary and fallback mechanisms for the running OS."""
    family = os_family()
    if family == "windows":
        return [PowerShellFirewall(runner), NetshFirewall(runner)]
    if family == "darwin":
        return [ApplicationFirewall(binary_path, runner)]
    return [UfwFirewall(runner), IptablesFirewall(runner)]


class FirewallManager:
    """Open and close named inbound rules, best effort."""

    def __init__(
        self,
        mechanisms: Optional[list[FirewallMechanism]] = None,
        binary_path: Optional[Path] = None,
        admin_check: Callable[[], bool] = is_admin,
    ):
        """Initialize the firewall manager.

        Args:
            mechanisms: Ordered mechanisms (primary first); chosen by OS when omitted
            binary_path: Installed binary (application firewalls)
            admin_check: Returns True when the process has admin rights
        """
        self.mechanisms = mechanisms if mechanisms is not None else default_mechanisms(binary_path)
        self._admin_check = admin_check

    def open_port(self, port: int, rule_name: str) -> FirewallResult:
        """Allow inbound TCP traffic to port under a named rule.

        Idempotent: an existing rule with the same name is left alone.
        """
        if not self._admin_check():
            return self._soft_fail(
                rule_name,
                port,
                [f"administrative rights are required to add rule '{rule_name}'"],
            )

        errors = []
        for mechanism in self.mechanisms:
            try:
                if mechanism.has_rule(rule_name):
                    logger.info("Firewall rule '%s' already present (%s)", rule_name, mechanism.name)
                    return FirewallResult(
                        success=True,
                        rule_name=rule_name,
                        port=port,
                        mechanism=mechanism.name,
                        message=f"rule '{rule_name}' already present",
                    )
                mechanism.add_rule(port, rule_name)
            except FirewallWarning as e:
                logger.info("Firewall mechanism %s failed: %s", mechanism.name, e)
                errors.append(str(e))
                continue

            logger.info("Opened TCP port %d via %s (rule '%s')", port, mechanism.name, rule_name)
            return FirewallResult(
                success=True,
                rule_name=rule_name,
                port=port,
                mechanism=mechanism.name,
                message=f"opened TCP {port} via {mechanism.name}",
            )

        return self._soft_fail(rule_name, port, errors or ["no firewall mechanism available"])

    def close_port(self, rule_name: str) -> FirewallResult:
        """Remove a named rule from every mechanism that has it."""
        if not self._admin_check():
            return self._soft_fail(
                rule_name,
                None,
                [f"administrative rights are required to remove rule '{rule_name}'"],
            )

        errors = []
        removed_by = []
        for mechanism in self.mechanisms:
            try:
                if mechanism.has_rule(rule_name):
                    mechanism.remove_rule(rule_name)
                    removed_by.append(mechanism.name)
            except FirewallWarning as e:
                errors.append(str(e))

        if errors and not removed_by:
            return self._soft_fail(rule_name, None, errors)

        message = (
            f"removed rule '{rule_name}' via {', '.join(removed_by)}"
            if removed_by
            else f"rule '{rule_name}' not present"
        )
        return FirewallResult(
            success=True,
            rule_name=rule_name,
            mechanism=", ".join(removed_by) or None,
            message=message,
        )

    def _soft_fail(self, rule_name: str, port: Optional[int], errors: list[str]) -> FirewallResult:
        warning = FirewallWarning("; ".join(errors))
        logger.warning("Firewall rule '%s' not applied: %s", rule_name, warning.describe())
        return FirewallResult(
            success=False,
            rule_name=rule_name,
            port=port,
            message=warning.describe(),
        )
