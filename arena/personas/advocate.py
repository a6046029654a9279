"""AI advocates - one argues each side of the motion."""

from typing import Any

from arena.lib.models import AdvocateContext, AdvocateStatement, GenerationKind, Side
from arena.personas.base import (
    Persona,
    PersonaConfig,
    render_argument,
    render_motion,
    render_rounds,
)

ADVOCATE_CONFIGS = {
    Side.A: PersonaConfig(
        name="Counsel Hale",
        codename="advocate_analytical",
        title="Analytical Advocate",
        background=(
            "Twenty years as a trial lawyer known for cold, evidence-first analysis. "
            "Builds every point on data and verifiable fact."
        ),
        expertise="Logical analysis",
    ),
    Side.B: PersonaConfig(
        name="Counsel Moreau",
        codename="advocate_diplomatic",
        title="Diplomatic Advocate",
        background=(
            "Former international negotiator turned advocate. Balanced, persuasive, "
            "and skilled at finding the weak joint in an opponent's framing."
        ),
        expertise="Negotiation and mediation",
    ),
}


class AdvocatePersona(Persona):
    """Writes one side's statement for a debate round."""

    kind = GenerationKind.ADVOCATE
    output_schema = AdvocateStatement
    minimum_fields = ("statement", "key_points")

    def __init__(self, side: Side):
        self.side = side

    @property
    def config(self) -> PersonaConfig:
        return ADVOCATE_CONFIGS[self.side]

    @property
    def role_instructions(self) -> str:
        return (
            f"You represent Side {self.side.value}. Defend your client's position "
            "and rebut the opposing side. Each round should build on the previous "
            "rounds and answer any rebuttals the humans submitted."
        )

    @property
    def output_example(self) -> dict[str, Any]:
        return {
            "statement": "Your argument for this round (50-4000 characters)",
            "key_points": ["2 to 5 key points"],
            "counter_arguments": ["1 to 3 direct rebuttals of the other side"],
            "evidence_references": ["Up to 5 pieces of evidence you relied on"],
        }

    def build_user_prompt(self, context: AdvocateContext) -> str:
        return (
            f"{render_motion(context.motion)}\n\n"
            f"## Your client's opening argument\n"
            f"{render_argument(context.own_argument)}\n\n"
            f"## The opposing opening argument\n"
            f"{render_argument(context.opponent_argument)}\n\n"
            f"## Debate so far\n{render_rounds(context.prior_rounds)}\n\n"
            f"Write Side {self.side.value}'s statement for round {context.round_number}."
        )

    def default_output(self) -> dict[str, Any]:
        return {
            "statement": (
                "A statement could not be generated for this turn because of a "
                "technical error. The position stands on the opening argument."
            ),
            "key_points": ["Generation failed", "Retry recommended"],
            "counter_arguments": ["Technical problem"],
            "evidence_references": [],
        }
