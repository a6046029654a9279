"""Personas for the arena's generative roles."""

from arena.lib.models import (
    AdvocateContext,
    GenerationContext,
    GenerationKind,
    JudgeContext,
    JurorContext,
)
from arena.personas.advocate import AdvocatePersona
from arena.personas.base import Persona, PersonaConfig
from arena.personas.judge import JudgePersona
from arena.personas.juror import JurorPersona


def persona_for(kind: GenerationKind, context: GenerationContext) -> Persona:
    """Pick the persona that handles a generation request."""
    if kind == GenerationKind.ADVOCATE and isinstance(context, AdvocateContext):
        return AdvocatePersona(context.side)
    if kind == GenerationKind.JUROR and isinstance(context, JurorContext):
        return JurorPersona(context.juror_number)
    if kind == GenerationKind.JUDGE and isinstance(context, JudgeContext):
        return JudgePersona()
    raise ValueError(f"Context {type(context).__name__} does not match kind {kind.value}")


__all__ = [
    "AdvocatePersona",
    "JudgePersona",
    "JurorPersona",
    "Persona",
    "PersonaConfig",
    "persona_for",
]
