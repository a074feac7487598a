"""
Tool Registry
-------------
Merges the catalogs of all connected providers into one namespace.

Rules:
- Built once at startup, read-only afterwards
- A tool name declared twice fails the build (no silent shadowing)
- Each descriptor carries its owning provider id and policy class
- Arguments are validated against the provider's JSON Schema before dispatch
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
import logging

import jsonschema
from jsonschema.exceptions import SchemaError, best_match

from core.errors import DuplicateToolError, SchemaValidationError, UnknownToolError

PERMISSIVE_SCHEMA: Dict[str, Any] = {"type": "object"}


class ToolClass(str, Enum):
    """Workflow policy class of a tool. Assigned by configuration."""
    PLAIN = "plain"              # No ordering constraints
    VALIDATING = "validating"    # Its passing result opens the gate
    GATED = "gated"              # Requires a prior pass in the same turn


@dataclass(frozen=True)
class ToolDescriptor:
    """A provider tool as seen by the orchestrator."""
    name: str
    description: str
    input_schema: Mapping[str, Any]
    provider_id: str
    tool_class: ToolClass = ToolClass.PLAIN

    def to_openai_function(self) -> Dict:
        """Convert to OpenAI function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description or "No description provided",
                "parameters": dict(self.input_schema),
            }
        }

    def __repr__(self) -> str:
        return f"Tool(name={self.name}, provider={self.provider_id}, class={self.tool_class.value})"


class ToolRegistry:
    """
    Registry of every tool exposed by the connected providers.

    This registry is the firewall between the planner and the providers.
    Lookups are safe from concurrent sessions: nothing mutates after build().
    """

    def __init__(self, descriptors: Iterable[ToolDescriptor] = ()):
        self._logger = logging.getLogger("echo.tools.registry")
        tools: Dict[str, ToolDescriptor] = {}
        validators: Dict[str, Any] = {}

        for descriptor in descriptors:
            existing = tools.get(descriptor.name)
            if existing is not None:
                raise DuplicateToolError(
                    descriptor.name, [existing.provider_id, descriptor.provider_id]
                )
            tools[descriptor.name] = descriptor
            validators[descriptor.name] = self._compile(descriptor)

        self._tools: Mapping[str, ToolDescriptor] = MappingProxyType(tools)
        self._validators: Mapping[str, Any] = MappingProxyType(validators)

    @classmethod
    def build(
        cls,
        handles: Iterable[Any],
        classes: Optional[Mapping[str, ToolClass]] = None
    ) -> "ToolRegistry":
        """
        Concatenate provider catalogs in handle order.

        Args:
            handles: Connected ProviderHandles
            classes: tool name -> ToolClass from policy configuration

        Raises:
            DuplicateToolError: if two catalogs declare the same name
        """
        classes = dict(classes or {})
        descriptors: List[ToolDescriptor] = []

        for handle in handles:
            for spec in handle.catalog:
                descriptors.append(ToolDescriptor(
                    name=spec.name,
                    description=spec.description,
                    input_schema=MappingProxyType(dict(spec.input_schema)),
                    provider_id=handle.provider_id,
                    tool_class=classes.get(spec.name, ToolClass.PLAIN),
                ))

        registry = cls(descriptors)

        for name in sorted(set(classes) - set(registry._tools)):
            registry._logger.warning(
                f"Policy classifies '{name}' as {classes[name].value} but no provider exposes it"
            )

        registry._logger.info(
            f"Registry built: {len(registry)} tools from "
            f"{len({d.provider_id for d in descriptors})} providers"
        )
        return registry

    def _compile(self, descriptor: ToolDescriptor) -> Any:
        """Build a JSON Schema validator for a tool's input schema."""
        schema = dict(descriptor.input_schema) or PERMISSIVE_SCHEMA
        validator_cls = jsonschema.validators.validator_for(schema)
        try:
            validator_cls.check_schema(schema)
        except SchemaError as e:
            self._logger.warning(
                f"Invalid input schema for {descriptor.name} ({descriptor.provider_id}): "
                f"{e.message}; accepting any object"
            )
            schema = PERMISSIVE_SCHEMA
            validator_cls = jsonschema.validators.validator_for(schema)
        return validator_cls(schema)

    def lookup(self, name: str) -> Tuple[ToolDescriptor, str]:
        """
        Resolve a tool name.

        Returns (descriptor, provider_id).
        Raises UnknownToolError.
        """
        descriptor = self._tools.get(name) if isinstance(name, str) else None
        if descriptor is None:
            raise UnknownToolError(str(name))
        return descriptor, descriptor.provider_id

    def get(self, name: str) -> Optional[ToolDescriptor]:
        return self._tools.get(name)

    def validate_args(self, name: str, arguments: Any) -> None:
        """
        Validate planner-supplied arguments against the tool schema.

        Raises:
            UnknownToolError: tool not registered
            SchemaValidationError: arguments are not an object or violate the schema
        """
        self.lookup(name)

        if not isinstance(arguments, dict):
            raise SchemaValidationError(
                name,
                f"Arguments for {name} must be a JSON object, got {type(arguments).__name__}"
            )

        error = best_match(self._validators[name].iter_errors(arguments))
        if error is not None:
            location = "/".join(str(p) for p in error.absolute_path)
            where = f" at '{location}'" if location else ""
            raise SchemaValidationError(name, f"Invalid arguments for {name}{where}: {error.message}")

    def list_tools(self) -> List[ToolDescriptor]:
        """List all tools in catalog order."""
        return list(self._tools.values())

    def list_by_provider(self, provider_id: str) -> List[ToolDescriptor]:
        return [t for t in self._tools.values() if t.provider_id == provider_id]

    def list_by_class(self, tool_class: ToolClass) -> List[ToolDescriptor]:
        return [t for t in self._tools.values() if t.tool_class == tool_class]

    def get_schemas_for_llm(self) -> List[Dict]:
        """Get all tool schemas in OpenAI function format."""
        return [tool.to_openai_function() for tool in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
