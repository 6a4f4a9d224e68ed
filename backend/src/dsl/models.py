"""
Pydantic models for strategy definitions.

A strategy is an immutable, ordered list of steps drawn from a small fixed
action vocabulary. Per-action parameter requirements are checked when a
step runs so a catalog can be loaded and listed before it is complete.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

READ_KEY_PREFIX = "read-"


class StepAction(StrEnum):
    """Actions a strategy step can perform."""

    GOTO = "GOTO"
    """Open a shadow tab at params.url; it becomes the working tab."""

    CLICK = "CLICK"
    """Click a target resolved from coordinates, selector or vision."""

    TYPE = "TYPE"
    """Insert params.text into the focused element."""

    READ = "READ"
    """Read the live value at params.selector into the output map."""

    WAIT = "WAIT"
    """Sleep params.timeout milliseconds."""


class StepParams(BaseModel):
    """Action parameters; which fields are required depends on the action."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    url: str | None = None
    x: float | None = None
    y: float | None = None
    selector: str | None = None
    description: str | None = Field(
        default=None,
        description="Natural-language description of the target for the vision fallback",
    )
    text: str | None = None
    timeout: int | None = Field(default=None, ge=0, le=600000, description="WAIT duration in ms")

    @property
    def has_coordinates(self) -> bool:
        return self.x is not None and self.y is not None


class Step(BaseModel):
    """A single strategy step."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(min_length=1, max_length=128)
    action: StepAction
    params: StepParams = Field(default_factory=StepParams)
    next: str | None = Field(
        default=None,
        description="Explicit successor step id (informational; steps run in order)",
    )

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, v: Any) -> Any:
        """Accept actions in any case ("goto", "Goto")."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @property
    def output_key(self) -> str:
        """Key under which a READ step stores its value."""
        return self.id.removeprefix(READ_KEY_PREFIX)

    def missing_params(self) -> list[str]:
        """Names of parameters this step's action requires but lacks."""
        params = self.params
        match self.action:
            case StepAction.GOTO:
                return [] if params.url else ["url"]
            case StepAction.TYPE:
                return [] if params.text is not None else ["text"]
            case StepAction.READ:
                return [] if params.selector else ["selector"]
            case StepAction.CLICK:
                if params.selector or params.has_coordinates:
                    return []
                return ["selector or x/y"]
            case _:
                return []


class Strategy(BaseModel):
    """
    A named automation task.

    Templates are frozen; derive patched copies with model_copy(update=...)
    instead of editing a catalog entry in place.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(min_length=1, max_length=128)
    name: str = Field(min_length=1, max_length=256)
    description: str = ""
    steps: list[Step]

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if any(c.isspace() for c in v):
            raise ValueError("Strategy id cannot contain whitespace")
        return v

    @model_validator(mode="after")
    def validate_steps(self) -> Strategy:
        """Step ids must be unique and successors must exist."""
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"Duplicate step id '{step.id}'")
            seen.add(step.id)

        for step in self.steps:
            if step.next is not None and step.next not in seen:
                raise ValueError(f"Step '{step.id}' references unknown successor '{step.next}'")
        return self

    def step(self, step_id: str) -> Step | None:
        return next((s for s in self.steps if s.id == step_id), None)

    def incomplete_steps(self) -> dict[str, list[str]]:
        """Map of step id to missing required parameters."""
        return {s.id: missing for s in self.steps if (missing := s.missing_params())}
