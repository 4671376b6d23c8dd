"""ApprovalPolicy model with capability risk rules."""

import re
from fnmatch import fnmatchcase
from typing import Any, Dict, List, Mapping, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

from agentd.models.tool_call import RiskLevel


DEFAULT_SENSITIVE_CAPABILITIES = [
    "*write*",
    "*delete*",
    "*remove*",
    "shell*",
    "*exec*",
    "*payment*",
    "*transfer*",
    "*send*",
]

DEFAULT_ARGUMENT_RULES = {
    "http*": {"method": ["post", "put", "patch", "delete"]},
}


def _matches(name: str, pattern: str) -> bool:
    return fnmatchcase(name.lower(), pattern.lower())


class ApprovalPolicy(BaseModel):
    """
    Static, configuration-driven risk classification for tool calls.

    Resolution order: explicit safe overrides, explicit sensitive patterns,
    argument inspection rules, then the default risk.
    """

    policy_id: str = Field(default="default", description="Unique identifier for the policy")
    name: str = Field(default="Default approval policy", description="Human-readable policy name")
    description: str = Field(default="", description="Policy purpose and scope")
    default_risk: RiskLevel = Field(default=RiskLevel.SAFE, description="Risk for capabilities no rule matches")
    sensitive_capabilities: List[str] = Field(
        default_factory=lambda: list(DEFAULT_SENSITIVE_CAPABILITIES),
        description="Capability name patterns that always need approval"
    )
    safe_capabilities: List[str] = Field(
        default_factory=list,
        description="Capability name patterns exempt from approval (overrides sensitive patterns)"
    )
    argument_rules: Dict[str, Dict[str, List[str]]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_ARGUMENT_RULES.items()},
        description="Capability pattern -> argument name -> value patterns that make a call sensitive"
    )

    @field_validator("policy_id")
    @classmethod
    def validate_policy_id(cls, v):
        """Validate policy ID follows naming convention."""
        if not v.strip():
            raise ValueError("policy_id cannot be empty")

        if not re.match(r"^[a-zA-Z0-9_-]+$", v):
            raise ValueError("policy_id must contain only alphanumeric characters, underscores, and hyphens")

        return v.strip()

    @model_validator(mode="after")
    def validate_overlap(self):
        """The same pattern cannot be both safe and sensitive."""
        overlap = set(self.safe_capabilities).intersection(self.sensitive_capabilities)
        if overlap:
            raise ValueError(f"Capabilities cannot be both safe and sensitive: {sorted(overlap)}")
        return self

    def evaluate(self, capability: str, arguments: Mapping[str, Any]) -> Tuple[RiskLevel, str]:
        """Classify a call.

        Args:
            capability: Capability name requested by the provider
            arguments: Call arguments

        Returns:
            Risk level and a short reason naming the rule that decided it
        """
        for pattern in self.safe_capabilities:
            if _matches(capability, pattern):
                return RiskLevel.SAFE, f"capability matches safe override '{pattern}'"

        for pattern in self.sensitive_capabilities:
            if _matches(capability, pattern):
                return RiskLevel.SENSITIVE, f"capability matches sensitive pattern '{pattern}'"

        for capability_pattern, rules in self.argument_rules.items():
            if not _matches(capability, capability_pattern):
                continue
            for argument, value_patterns in rules.items():
                if argument not in arguments:
                    continue
                value = str(arguments[argument])
                for value_pattern in value_patterns:
                    if _matches(value, value_pattern):
                        return (
                            RiskLevel.SENSITIVE,
                            f"argument '{argument}' matches '{value_pattern}'"
                        )

        return self.default_risk, "default policy risk"
