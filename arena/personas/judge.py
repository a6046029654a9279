"""The AI judge - delivers the final verdict."""

from typing import Any

from arena.lib.models import GenerationKind, JudgeContext, JudgeRuling
from arena.personas.base import Persona, PersonaConfig, render_debate

JUDGE_CONFIG = PersonaConfig(
    name="Justice Arden",
    codename="judge_balanced",
    title="Presiding Judge",
    background=(
        "Thirty years on the bench across every kind of case, known for weighing "
        "principle and common sense evenly."
    ),
    expertise="Adjudication",
)


class JudgePersona(Persona):
    kind = GenerationKind.JUDGE
    output_schema = JudgeRuling
    minimum_fields = ("summary", "reasoning", "score_a", "score_b")

    @property
    def config(self) -> PersonaConfig:
        return JUDGE_CONFIG

    @property
    def role_instructions(self) -> str:
        return (
            "Judge the debate on logical consistency, reliability of evidence, "
            "effectiveness of rebuttals and overall persuasiveness. The jury's "
            "votes are advisory; your verdict is your own."
        )

    @property
    def output_example(self) -> dict[str, Any]:
        return {
            "summary": "Short summary of the debate",
            "analysis_a": "Analysis of side A",
            "analysis_b": "Analysis of side B",
            "strengths_a": ["1 to 5 items"],
            "weaknesses_a": ["1 to 5 items"],
            "strengths_b": ["1 to 5 items"],
            "weaknesses_b": ["1 to 5 items"],
            "reasoning": "Reasoning behind the verdict (at least 50 characters)",
            "winner": "A or B",
            "score_a": 0,
            "score_b": 0,
        }

    def build_user_prompt(self, context: JudgeContext) -> str:
        lines = [render_debate(context.debate), "", "## Jury"]
        if context.jury_votes:
            for vote in context.jury_votes:
                lines.append(
                    f"Juror {vote.juror_number}: {vote.vote.value} "
                    f"(confidence {vote.confidence}/10) - {vote.reasoning}"
                )
        else:
            lines.append("(no jury votes)")
        if context.tally is not None:
            lines.append(
                f"Tally: A {context.tally.votes_a}, B {context.tally.votes_b}, "
                f"average confidence {context.tally.average_confidence}"
            )
        lines.append("")
        lines.append("Deliver your verdict. Scores are integers from 0 to 100.")
        return "\n".join(lines)

    def default_output(self) -> dict[str, Any]:
        return {
            "summary": "A verdict could not be generated due to a technical error.",
            "analysis_a": "Analysis of side A could not be completed.",
            "analysis_b": "Analysis of side B could not be completed.",
            "strengths_a": ["Analysis unavailable"],
            "weaknesses_a": ["Analysis unavailable"],
            "strengths_b": ["Analysis unavailable"],
            "weaknesses_b": ["Analysis unavailable"],
            "reasoning": (
                "A detailed ruling could not be produced because of a technical "
                "problem; scores are neutral."
            ),
            "winner": "A",
            "score_a": 50,
            "score_b": 50,
        }
