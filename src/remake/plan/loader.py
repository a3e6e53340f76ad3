"""Pydantic models for YAML plan files.

Usage::

    from remake.plan.loader import PlanSpec, load_plan

    plan = load_plan("plan.yaml")

    # Or from a YAML string
    spec = PlanSpec.from_yaml(yaml_content)
    plan = spec.to_plan()

Example YAML::

    apiVersion: remake.io/v1
    kind: Plan
    metadata:
      name: analysis
      description: Fit and report
    spec:
      defaults:
        retries: 1
      targets:
        - name: raw
          command: "read_csv(file_in('data.csv'))"
        - name: model
          command: "fit(raw)"
          timeout: 600
        - name: stamp
          command: "fetch()"
          trigger:
            change: "remote_timestamp()"

Manifesto:
    Plan authors should be able to keep the table of targets next to the
    data, outside Python. YAML plans load into the same :class:`Plan`
    used by code-first authors, so both paths are first-class.

Tags:
    remake, plan, yaml, declarative, pydantic

Doc-Types:
    api-reference
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from remake.core.errors import PlanValidationError
from remake.plan.models import Plan, TargetDef
from remake.plan.triggers import Trigger, TriggerMode


class TriggerSpec(BaseModel):
    """Trigger section of a target."""

    model_config = ConfigDict(extra="forbid")

    command: bool = Field(default=True, description="Rebuild when the command changes")
    depend: bool = Field(default=True, description="Rebuild when a dependency changes")
    file: bool = Field(default=True, description="Rebuild when files change")
    condition: bool | str = Field(default=False, description="Boolean or command text")
    change: str | None = Field(default=None, description="Command whose value is fingerprinted")
    mode: TriggerMode = Field(default=TriggerMode.WHITELIST)

    def to_trigger(self) -> Trigger:
        return Trigger(
            command=self.command,
            depend=self.depend,
            file=self.file,
            condition=self.condition,
            change=self.change,
            mode=self.mode,
        )


class TargetSpec(BaseModel):
    """One target row."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, description="Unique target name (a Python identifier)")
    command: str = Field(..., description="Python source; the last expression is the value")
    description: str = Field(default="")
    tags: list[str] = Field(default_factory=list)
    trigger: TriggerSpec | Literal["always", "never"] | None = Field(default=None)
    timeout: float | None = Field(default=None, gt=0)
    elapsed: float | None = Field(default=None, gt=0)
    cpu: float | None = Field(default=None, gt=0)
    retries: int | None = Field(default=None, ge=0)

    def to_target(self, defaults: PlanDefaultsSpec | None = None) -> TargetDef:
        if self.trigger == "always":
            trig: Trigger | None = Trigger.always()
        elif self.trigger == "never":
            trig = Trigger.never()
        elif isinstance(self.trigger, TriggerSpec):
            trig = self.trigger.to_trigger()
        else:
            trig = None
        d = defaults or PlanDefaultsSpec()
        return TargetDef(
            name=self.name,
            command=self.command,
            trigger=trig,
            timeout=self.timeout if self.timeout is not None else d.timeout,
            elapsed=self.elapsed if self.elapsed is not None else d.elapsed,
            cpu=self.cpu if self.cpu is not None else d.cpu,
            retries=self.retries if self.retries is not None else d.retries,
            description=self.description,
            tags=tuple(self.tags),
        )


class PlanDefaultsSpec(BaseModel):
    """Override values applied to every target that leaves them unset."""

    model_config = ConfigDict(extra="forbid")

    timeout: float | None = Field(default=None, gt=0)
    elapsed: float | None = Field(default=None, gt=0)
    cpu: float | None = Field(default=None, gt=0)
    retries: int | None = Field(default=None, ge=0)


class PlanMetadataSpec(BaseModel):
    """Metadata section of a plan file."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(default="plan", min_length=1)
    description: str = Field(default="")


class PlanSpecSection(BaseModel):
    """The 'spec' section containing defaults and targets."""

    model_config = ConfigDict(extra="forbid")

    defaults: PlanDefaultsSpec = Field(default_factory=PlanDefaultsSpec)
    targets: list[TargetSpec] = Field(..., min_length=1)

    @field_validator("targets")
    @classmethod
    def validate_unique_names(cls, v: list[TargetSpec]) -> list[TargetSpec]:
        """Ensure target names are unique."""
        names = [t.name for t in v]
        if len(names) != len(set(names)):
            duplicates = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate target names: {duplicates}")
        return v


class PlanSpec(BaseModel):
    """Complete YAML plan specification (root model)."""

    model_config = ConfigDict(extra="forbid")

    apiVersion: Literal["remake.io/v1"] = Field(default="remake.io/v1")
    kind: Literal["Plan"] = Field(default="Plan")
    metadata: PlanMetadataSpec = Field(default_factory=PlanMetadataSpec)
    spec: PlanSpecSection

    def to_plan(self) -> Plan:
        """Convert the validated spec into a :class:`Plan`."""
        return Plan(t.to_target(self.spec.defaults) for t in self.spec.targets)

    @classmethod
    def from_yaml(cls, yaml_content: str) -> PlanSpec:
        """Parse and validate YAML content.

        Raises
        ------
        PlanValidationError
            If the YAML is invalid or doesn't match the schema.
        """
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise PlanValidationError(f"Invalid YAML: {e}", cause=e) from e
        if not isinstance(data, dict):
            raise PlanValidationError("A plan file must contain a mapping at the top level")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise PlanValidationError(f"Invalid plan file: {e}", cause=e) from e

    @classmethod
    def from_yaml_file(cls, path: str | Path) -> PlanSpec:
        """Load and validate from a YAML file."""
        try:
            content = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise PlanValidationError(f"Cannot read plan file {path}: {e}", cause=e) from e
        return cls.from_yaml(content)

    @classmethod
    def from_plan(cls, plan: Plan, name: str = "plan") -> PlanSpec:
        """Build a spec from a runtime :class:`Plan` (for writing YAML)."""
        targets = []
        for t in plan:
            trig: Any = None
            if t.trigger is not None:
                trig = TriggerSpec(**t.trigger.to_dict())
            targets.append(
                TargetSpec(
                    name=t.name,
                    command=t.command,
                    description=t.description,
                    tags=list(t.tags),
                    trigger=trig,
                    timeout=t.timeout,
                    elapsed=t.elapsed,
                    cpu=t.cpu,
                    retries=t.retries,
                )
            )
        return cls(metadata=PlanMetadataSpec(name=name), spec=PlanSpecSection(targets=targets))

    def to_yaml(self) -> str:
        data = self.model_dump(mode="json", exclude_defaults=True)
        data.setdefault("apiVersion", self.apiVersion)
        data.setdefault("kind", self.kind)
        return yaml.safe_dump(data, sort_keys=False)


def load_plan(path: str | Path) -> Plan:
    """Read a YAML plan file and return the validated :class:`Plan`."""
    return PlanSpec.from_yaml_file(path).to_plan()


__all__ = [
    "TriggerSpec",
    "TargetSpec",
    "PlanDefaultsSpec",
    "PlanMetadataSpec",
    "PlanSpecSection",
    "PlanSpec",
    "load_plan",
]
