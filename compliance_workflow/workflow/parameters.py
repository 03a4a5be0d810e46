"""Provider parameter variants and the parameter resolver.

Each provider has exactly one parameter shape. The shape is selected by the
rule's sibling ``Provider`` field, so every variant carries a class-level
``provider`` tag and rejects unknown fields: a Registry rule carrying
FileSystem-shaped parameters fails to resolve instead of being silently
accepted.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import ConfigDict, Field, JsonValue
from pydantic import ValidationError as PydanticValidationError

from .errors import ParameterError
from .types import ContractModel, ProviderType

if TYPE_CHECKING:
    from .schemas import Rule


class ProviderParametersBase(ContractModel):
    """Common base of all provider parameter shapes."""

    provider: ClassVar[ProviderType]

    model_config = ConfigDict(extra="forbid")


class RegistryParameters(ProviderParametersBase):
    """Registry probe parameters."""

    provider: ClassVar[ProviderType] = ProviderType.REGISTRY

    hive: str | None = Field(None, description="Registry hive, e.g. HKEY_LOCAL_MACHINE")
    path: str | None = Field(None, description="Key path under the hive")
    key: str | None = Field(None, description="Value name within the key")


class FileSystemParameters(ProviderParametersBase):
    """File system probe parameters."""

    provider: ClassVar[ProviderType] = ProviderType.FILE_SYSTEM

    path: str | None = Field(None, description="File or directory path")
    permissions: str | None = Field(None, description="ACL descriptor or policy label")
    recursive: bool = Field(False, description="Recurse into subdirectories")


class AclParameters(ProviderParametersBase):
    """Access control list probe parameters."""

    provider: ClassVar[ProviderType] = ProviderType.ACL

    path: str | None = Field(None, description="Target object path")
    identity: str | None = Field(None, description="User or group to examine")
    rights: str | None = Field(None, description="Rights evaluated, e.g. FullControl")


class WmiParameters(ProviderParametersBase):
    """WMI probe parameters."""

    provider: ClassVar[ProviderType] = ProviderType.WMI

    namespace: str | None = Field(None, description="WMI namespace, e.g. root\\cimv2")
    class_name: str | None = Field(None, alias="Class", description="WMI class name")
    property_name: str | None = Field(None, alias="Property", description="Queried property")


class EventLogParameters(ProviderParametersBase):
    """Event log probe parameters."""

    provider: ClassVar[ProviderType] = ProviderType.EVENT_LOG

    log_name: str | None = Field(None, description="Log name, e.g. Application")
    source: str | None = Field(None, description="Event source within the log")
    event_id: int | None = Field(None, description="Event ID to match")
    since: datetime | None = Field(None, description="Only events at or after this time")


class ServiceParameters(ProviderParametersBase):
    """Service probe parameters."""

    provider: ClassVar[ProviderType] = ProviderType.SERVICE

    service_name: str | None = Field(None, description="Service name, e.g. Spooler")
    expected_status: str | None = Field(None, description="Running, Stopped, Disabled, ...")


class ProcessParameters(ProviderParametersBase):
    """Process probe parameters."""

    provider: ClassVar[ProviderType] = ProviderType.PROCESS

    process_name: str | None = Field(None, description="Process image name")
    expected_count: int | None = Field(None, description="Expected instance count")


class CustomParameters(ProviderParametersBase):
    """Free-form parameters for custom providers; the probe validates them."""

    provider: ClassVar[ProviderType] = ProviderType.CUSTOM

    values: dict[str, JsonValue] = Field(default_factory=dict)


ProviderParameters = (
    RegistryParameters
    | FileSystemParameters
    | AclParameters
    | WmiParameters
    | EventLogParameters
    | ServiceParameters
    | ProcessParameters
    | CustomParameters
)

PARAMETER_MODELS: dict[ProviderType, type[ProviderParametersBase]] = {
    model.provider: model
    for model in (
        RegistryParameters,
        FileSystemParameters,
        AclParameters,
        WmiParameters,
        EventLogParameters,
        ServiceParameters,
        ProcessParameters,
        CustomParameters,
    )
}


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error["loc"]) or "<root>"
        parts.append(f"{loc}: {error['msg']}")
    return "; ".join(parts)


def resolve_parameters(provider: ProviderType | str, raw: Any) -> ProviderParametersBase:
    """Return the parameter variant for ``provider`` built from ``raw``.

    ``raw`` may be a mapping (as found in a document) or an already built
    variant. Raises ParameterError when the shape does not match.
    """
    try:
        provider = ProviderType(provider)
    except ValueError:
        raise ParameterError(f"Unknown provider '{provider}'") from None

    if isinstance(raw, ProviderParametersBase):
        if raw.provider is not provider:
            raise ParameterError(
                f"Provider {provider.value} requires {PARAMETER_MODELS[provider].__name__}, "
                f"got {raw.provider.value} parameters"
            )
        return raw

    if raw is None:
        raise ParameterError(f"Parameters are required for provider {provider.value}")
    if not isinstance(raw, Mapping):
        raise ParameterError(
            f"Parameters for provider {provider.value} must be an object, "
            f"got {type(raw).__name__}"
        )

    try:
        return PARAMETER_MODELS[provider].model_validate(dict(raw))
    except PydanticValidationError as exc:
        raise ParameterError(
            f"Parameters do not match the {provider.value} shape: {_describe(exc)}"
        ) from None


def resolve(rule: Rule) -> ProviderParametersBase:
    """Resolve a rule's parameters against its declared provider."""
    return resolve_parameters(rule.provider, rule.parameters)
