"""Abstract base class for arena personas.

A persona turns a generation context into prompts for one role (advocate,
juror or judge) and knows the structured output that role must return.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from arena.lib.models import (
    ArgumentSnapshot,
    DebateContext,
    GenerationKind,
    MotionSnapshot,
    RoundTranscript,
)


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass
class PersonaConfig:
    """Configuration for a persona."""

    name: str  # Display name (e.g., "Counsel Hale")
    codename: str  # Short identifier (e.g., "advocate_analytical")
    title: str  # Role title (e.g., "Analytical Advocate")
    background: str  # Who this persona is
    expertise: str = ""  # Optional specialty shown to the model


# =============================================================================
# System Prompt Template
# =============================================================================


PERSONA_SYSTEM_PROMPT_TEMPLATE = """You are {name}, {title} in the Debate Arena.

Background: {background}
{expertise_line}
## Your Role
{role_instructions}

## Output Format
Respond with a single JSON object and nothing else:
```json
{output_example}
```

## Rules
1. Argue from the material in the debate record, not from invented facts
2. Be specific and concrete - avoid vague generalizations
3. Keep a respectful tone; attack arguments, never people
4. Every list field must respect the item limits shown above
"""


# =============================================================================
# Transcript rendering
# =============================================================================


def render_motion(motion: MotionSnapshot) -> str:
    text = f"Motion: {motion.title}"
    if motion.description:
        text += f"\n{motion.description}"
    return text


def render_argument(argument: ArgumentSnapshot) -> str:
    lines = [f"Side {argument.side.value} - {argument.title}", argument.content]
    if argument.evidence:
        lines.append("Evidence: " + "; ".join(argument.evidence))
    return "\n".join(lines)


def render_rounds(rounds: list[RoundTranscript]) -> str:
    if not rounds:
        return "(no rounds yet)"
    blocks = []
    for transcript in rounds:
        lines = [f"### Round {transcript.round_number}"]
        for turn in transcript.turns:
            lines.append(f"Side {turn.side.value} advocate: {turn.content}")
        for rebuttal in transcript.rebuttals:
            lines.append(f"Side {rebuttal.side.value} rebuttal: {rebuttal.content}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def render_debate(debate: DebateContext) -> str:
    """Full debate record shown to jurors and the judge."""
    return (
        f"{render_motion(debate.motion)}\n\n"
        f"## Opening arguments\n{render_argument(debate.argument_a)}\n\n"
        f"{render_argument(debate.argument_b)}\n\n"
        f"## Debate\n{render_rounds(debate.rounds)}"
    )


# =============================================================================
# Abstract Base Class
# =============================================================================


class Persona(ABC):
    """
    Abstract base class for all personas.

    Subclasses must implement:
    - kind / output_schema / config
    - role_instructions: what the persona is asked to do
    - build_user_prompt(): the debate material for one call
    - minimum_fields / default_output(): partial-recovery support
    """

    kind: GenerationKind
    output_schema: type[BaseModel]
    minimum_fields: tuple[str, ...] = ()

    @property
    @abstractmethod
    def config(self) -> PersonaConfig:
        """Persona configuration."""
        pass

    @property
    @abstractmethod
    def role_instructions(self) -> str:
        pass

    @property
    @abstractmethod
    def output_example(self) -> dict[str, Any]:
        """Example JSON object shown to the model."""
        pass

    @abstractmethod
    def build_user_prompt(self, context: Any) -> str:
        pass

    @abstractmethod
    def default_output(self) -> dict[str, Any]:
        """Neutral placeholder output used only as a flagged fallback."""
        pass

    def build_system_prompt(self) -> str:
        expertise_line = (
            f"Expertise: {self.config.expertise}\n" if self.config.expertise else ""
        )
        return PERSONA_SYSTEM_PROMPT_TEMPLATE.format(
            name=self.config.name,
            title=self.config.title,
            background=self.config.background,
            expertise_line=expertise_line,
            role_instructions=self.role_instructions,
            output_example=json.dumps(self.output_example, indent=4),
        )

    def has_minimum_fields(self, data: dict[str, Any]) -> bool:
        """Whether a raw object carries enough to salvage a partial result."""
        return all(data.get(name) not in (None, "", []) for name in self.minimum_fields)
