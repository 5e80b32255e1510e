"""Audit configuration file models.

Only the audit-related keys are modelled; everything else in a server
config file (connections, pools, policies) is ignored here.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from mssql_mcp_audit.audit.models import AuditLevel
from mssql_mcp_audit.audit.sinks.config import AuditSinkConfig


class _ConfigBase(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class EnvironmentAuditConfig(_ConfigBase):
    """Audit settings of one deployment environment."""

    name: str = Field(..., min_length=1)
    audit_level: AuditLevel = Field(
        default=AuditLevel.BASIC,
        description="Level the policy wrapper applies to invocations in this environment.",
    )
    audit_sinks: List[AuditSinkConfig] = Field(
        default_factory=list,
        description="Sinks replacing the global sinks for this environment.",
    )


class AuditConfig(_ConfigBase):
    """Top-level audit configuration."""

    audit_sinks: List[AuditSinkConfig] = Field(
        default_factory=list,
        description="Global sinks, used by environments without sinks of their own.",
    )
    environments: List[EnvironmentAuditConfig] = Field(default_factory=list)

    @field_validator("environments")
    @classmethod
    def _unique_names(cls, v: List[EnvironmentAuditConfig]) -> List[EnvironmentAuditConfig]:
        seen: set[str] = set()
        for env in v:
            if env.name in seen:
                raise ValueError(f"Duplicate environment name '{env.name}'")
            seen.add(env.name)
        return v

    def audit_level_for(self, environment: Optional[str]) -> AuditLevel:
        """Configured audit level for *environment* (``basic`` if unknown)."""
        for env in self.environments:
            if env.name == environment:
                return env.audit_level
        return AuditLevel.BASIC
