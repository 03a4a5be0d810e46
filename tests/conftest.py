"""Pytest fixtures for test suite."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable

import pytest

from compliance_workflow.core import FixedClock, Settings
from compliance_workflow.runtime import ProbeRegistry, WorkflowEngine
from compliance_workflow.workflow import ProviderType, ServiceParameters


FIXED_INSTANT = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Probes
# =============================================================================


class RecordingProbe:
    """Async service probe returning canned values keyed by ServiceName.

    Records every call and the start/end order of probes, and tracks the
    highest number of probes running at the same time. A canned value that
    is an exception instance is raised instead of returned.
    """

    def __init__(self, values: dict[str, Any] | None = None, delays: dict[str, float] | None = None):
        self.values = values or {}
        self.delays = delays or {}
        self.calls: list[str] = []
        self.events: list[tuple[str, str]] = []
        self.cancelled: list[str] = []
        self.active = 0
        self.max_active = 0

    async def __call__(self, parameters: ServiceParameters) -> Any:
        name = parameters.service_name
        self.calls.append(name)
        self.events.append(("start", name))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delays.get(name, 0))
        except asyncio.CancelledError:
            self.cancelled.append(name)
            raise
        finally:
            self.active -= 1
        self.events.append(("end", name))

        value = self.values.get(name)
        if isinstance(value, BaseException):
            raise value
        return value

    def index(self, kind: str, name: str) -> int:
        return self.events.index((kind, name))


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FixedClock:
    """Clock pinned to a fixed instant."""
    return FixedClock(FIXED_INSTANT)


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the environment defaults."""
    return Settings(max_workers=4, default_timeout_seconds=None, record_skipped_rules=True)


@pytest.fixture
def make_probe() -> Callable[..., RecordingProbe]:
    """Factory for recording service probes."""
    return RecordingProbe


@pytest.fixture
def make_engine(settings: Settings, clock: FixedClock) -> Callable[..., WorkflowEngine]:
    """Factory for engines with a service probe registered."""

    def factory(probe: Any, **options: Any) -> WorkflowEngine:
        registry = ProbeRegistry({ProviderType.SERVICE: probe})
        options.setdefault("settings", settings)
        options.setdefault("clock", clock)
        return WorkflowEngine(registry, **options)

    return factory


# =============================================================================
# Document Fixtures
# =============================================================================


@pytest.fixture
def make_rule() -> Callable[..., dict[str, Any]]:
    """Factory for Service rule documents checking a service status."""

    def factory(
        name: str,
        expected: Any = "Running",
        operator: str = "Equals",
        depends_on: list[str] | None = None,
        run_mode: str | None = None,
        stop_on_failure: bool | None = None,
        timeout: str | None = None,
        severity: int = 5,
        **extra: Any,
    ) -> dict[str, Any]:
        execution: dict[str, Any] = {}
        if depends_on:
            execution["DependsOn"] = depends_on
        if run_mode:
            execution["RunMode"] = run_mode
        if stop_on_failure is not None:
            execution["StopOnFailure"] = stop_on_failure
        if timeout:
            execution["Timeout"] = timeout

        rule = {
            "RuleName": name,
            "Provider": "Service",
            "Parameters": {"ServiceName": name},
            "Condition": {"Operator": operator, "Expected": expected},
            "Severity": severity,
            **extra,
        }
        if execution:
            rule["Execution"] = execution
        return rule

    return factory


@pytest.fixture
def make_workflow() -> Callable[..., dict[str, Any]]:
    """Factory for workflow documents."""

    def factory(
        *rules: dict[str, Any],
        run_sequentially: bool = False,
        stop_on_failure: bool = False,
        timeout: str | None = None,
        **extra: Any,
    ) -> dict[str, Any]:
        constraints: dict[str, Any] = {
            "RunSequentially": run_sequentially,
            "StopOnFailure": stop_on_failure,
        }
        if timeout:
            constraints["Timeout"] = timeout
        return {
            "WorkflowName": "Baseline",
            "SchemaVersion": "1.0",
            "Constraints": constraints,
            "Rules": list(rules),
            **extra,
        }

    return factory


@pytest.fixture
def baseline_document() -> dict[str, Any]:
    """A workflow touching every provider type."""
    return {
        "$schema": "https://example.com/schemas/workflow.json",
        "WorkflowName": "Windows Server Baseline",
        "SchemaVersion": "1.0",
        "Author": "Security Engineering",
        "CreatedOn": "2024-04-02T08:30:00Z",
        "Applicability": {
            "OSFamily": "Windows",
            "MinVersion": "10.0",
            "MaxVersion": "10.0.22631",
            "Product": "Windows Server 2022",
        },
        "Constraints": {"RunSequentially": False, "StopOnFailure": False, "Timeout": "00:01:00"},
        "Rules": [
            {
                "RuleName": "SMB1Disabled",
                "Provider": "Registry",
                "Parameters": {
                    "Hive": "HKEY_LOCAL_MACHINE",
                    "Path": "SYSTEM\\CurrentControlSet\\Services\\LanmanServer\\Parameters",
                    "Key": "SMB1",
                },
                "Condition": {"Operator": "Equals", "Expected": 0},
                "Severity": 9,
                "Message": "SMBv1 must be disabled",
                "Tags": ["network", "cis"],
            },
            {
                "RuleName": "HostsFileLocked",
                "Provider": "FileSystem",
                "Parameters": {
                    "Path": "C:\\Windows\\System32\\drivers\\etc\\hosts",
                    "Permissions": "ReadOnly",
                    "Recursive": False,
                },
                "Condition": {"Operator": "Exists"},
                "Severity": 4,
            },
            {
                "RuleName": "UsersCannotWriteSystem32",
                "Provider": "ACL",
                "Parameters": {"Path": "C:\\Windows\\System32", "Identity": "BUILTIN\\Users", "Rights": "Write"},
                "Condition": {"Operator": "NotExists"},
                "Severity": 8,
            },
            {
                "RuleName": "SecureBootEnabled",
                "Provider": "WMI",
                "Parameters": {
                    "Namespace": "root\\Microsoft\\Windows\\HardwareManagement",
                    "Class": "MSFT_SecureBoot",
                    "Property": "Enabled",
                },
                "Condition": {"Operator": "Equals", "Expected": True},
                "Severity": 7,
            },
            {
                "RuleName": "NoAuditLogClears",
                "Provider": "EventLog",
                "Parameters": {
                    "LogName": "Security",
                    "Source": "Microsoft-Windows-Eventlog",
                    "EventId": 1102,
                    "Since": "2024-01-01T00:00:00Z",
                },
                "Condition": {"Operator": "LessThan", "Expected": 1},
                "Severity": 6,
                "Execution": {"DependsOn": ["SecureBootEnabled"]},
            },
            {
                "RuleName": "SpoolerStopped",
                "Provider": "Service",
                "Parameters": {"ServiceName": "Spooler", "ExpectedStatus": "Stopped"},
                "Condition": {"Operator": "Equals", "Expected": "Stopped"},
                "Severity": 5,
                "Execution": {"RunMode": "Sequential", "Timeout": "00:00:30"},
            },
            {
                "RuleName": "SingleLsass",
                "Provider": "Process",
                "Parameters": {"ProcessName": "lsass.exe", "ExpectedCount": 1},
                "Condition": {"Operator": "Equals", "Expected": 1},
                "Severity": 10,
                "Execution": {"StopOnFailure": True},
            },
            {
                "RuleName": "AgentVersion",
                "Provider": "Custom",
                "Parameters": {"Values": {"agent": "edr", "checks": ["version", "signature"], "strict": True}},
                "Condition": {"Operator": "RegexMatch", "Expected": "7\\.\\d+\\.\\d+"},
                "Severity": 3,
                "Tags": ["edr"],
                "Execution": {"DependsOn": ["SingleLsass", "SMB1Disabled"]},
            },
        ],
    }
