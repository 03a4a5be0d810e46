"""Applicability checks: does a workflow target the host being assessed?"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field

from .schemas import Applicability


class HostInfo(BaseModel):
    """Description of the host a workflow is about to run against."""

    os_family: str | None = Field(None, description="e.g. 'Windows'")
    version: str | None = Field(None, description="Dotted OS version, e.g. '10.0.20348'")
    product: str | None = Field(None, description="e.g. 'Windows Server 2022'")


def _version_key(version: str) -> tuple[int, ...]:
    """Turn '10.0.22631' into (10, 0, 22631); non-numeric parts are ignored."""
    return tuple(int(part) for part in re.findall(r"\d+", version))


def compare_versions(left: str, right: str) -> int:
    """Compare dotted versions numerically; missing components count as zero."""
    a, b = _version_key(left), _version_key(right)
    width = max(len(a), len(b))
    a += (0,) * (width - len(a))
    b += (0,) * (width - len(b))
    return (a > b) - (a < b)


def applicability_mismatches(applicability: Applicability, host: HostInfo) -> list[str]:
    """List the reasons ``host`` falls outside the envelope (empty if it matches).

    Constraints the envelope leaves unset, or facts the host does not report,
    are not checked.
    """
    reasons = []

    if applicability.os_family and host.os_family:
        if applicability.os_family.casefold() != host.os_family.casefold():
            reasons.append(
                f"OS family '{host.os_family}' is not '{applicability.os_family}'"
            )

    if applicability.product and host.product:
        if applicability.product.casefold() != host.product.casefold():
            reasons.append(f"product '{host.product}' is not '{applicability.product}'")

    if host.version:
        if applicability.min_version and compare_versions(host.version, applicability.min_version) < 0:
            reasons.append(
                f"version {host.version} is older than {applicability.min_version}"
            )
        if applicability.max_version and compare_versions(host.version, applicability.max_version) > 0:
            reasons.append(
                f"version {host.version} is newer than {applicability.max_version}"
            )

    return reasons


def check_applicability(applicability: Applicability, host: HostInfo) -> bool:
    """Whether ``host`` is inside the applicability envelope."""
    return not applicability_mismatches(applicability, host)
