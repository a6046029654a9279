"""AI jurors - independent voters with distinct backgrounds."""

from typing import Any

from arena.lib.models import GenerationKind, JurorBallot, JurorContext
from arena.personas.base import Persona, PersonaConfig, render_debate

# Jurors 1-3 legal, 4-5 social science, 6+ humanities.
JUROR_BACKGROUNDS: list[tuple[str, str, str]] = [
    ("Juror Park", "A practising litigator in their thirties", "Law"),
    ("Juror Osei", "A retired appellate clerk", "Law"),
    ("Juror Lindqvist", "A legal-ethics lecturer", "Law"),
    ("Juror Haddad", "A sociologist who studies public policy", "Social science"),
    ("Juror Novak", "A behavioural economist", "Social science"),
    ("Juror Reyes", "A historian of political thought", "Humanities"),
    ("Juror Brandt", "A philosopher focused on practical ethics", "Humanities"),
    ("Juror Kato", "A novelist and essayist", "Humanities"),
    ("Juror Amari", "A schoolteacher of literature", "Humanities"),
]


def juror_config(juror_number: int) -> PersonaConfig:
    """Persona for juror N; numbers past the roster reuse humanities profiles."""
    if juror_number <= len(JUROR_BACKGROUNDS):
        name, background, expertise = JUROR_BACKGROUNDS[juror_number - 1]
    else:
        humanities = JUROR_BACKGROUNDS[5:]
        base_name, background, expertise = humanities[
            (juror_number - 1) % len(humanities)
        ]
        name = f"{base_name} {juror_number}"
    return PersonaConfig(
        name=name,
        codename=f"juror_{juror_number}",
        title=f"Juror #{juror_number}",
        background=background,
        expertise=expertise,
    )


class JurorPersona(Persona):
    kind = GenerationKind.JUROR
    output_schema = JurorBallot
    minimum_fields = ("vote", "reasoning", "confidence")

    def __init__(self, juror_number: int):
        self.juror_number = juror_number

    @property
    def config(self) -> PersonaConfig:
        return juror_config(self.juror_number)

    @property
    def role_instructions(self) -> str:
        return (
            "You have listened to the full debate. Vote for the side that argued "
            "more convincingly from your own professional perspective. You decide "
            "independently; you do not know how other jurors voted."
        )

    @property
    def output_example(self) -> dict[str, Any]:
        return {
            "vote": "A or B",
            "reasoning": "Why you voted this way (20-1500 characters)",
            "confidence": 7,
            "key_factors": ["1 to 3 deciding factors"],
        }

    def build_user_prompt(self, context: JurorContext) -> str:
        return (
            f"{render_debate(context.debate)}\n\n"
            "Cast your vote. Confidence is an integer from 1 to 10."
        )

    def default_output(self) -> dict[str, Any]:
        return {
            "vote": "A",
            "reasoning": "A detailed reason could not be produced due to a technical error.",
            "confidence": 5,
            "key_factors": ["Technical problem"],
        }
