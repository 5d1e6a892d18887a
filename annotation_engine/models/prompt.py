"""Schemas for adaptive prompt enhancements."""

from pydantic import BaseModel, Field


class PromptAdaptations(BaseModel):
    """Learned guidance to append to a base generation prompt."""

    positioning_hints: list[str] = Field(
        default_factory=list,
        description="Where the feature typically sits and how reviewers move it",
    )
    species_context: str = Field(
        default="",
        description="Species-level guidance such as features to prioritise",
    )
    feature_guidance: list[str] = Field(
        default_factory=list,
        description="Feature-level guidance from successful prompts and confidence",
    )
    quality_thresholds: dict[str, float] = Field(
        default_factory=dict,
        description="Numeric thresholds the generated annotations must meet",
    )
    common_mistakes: list[str] = Field(
        default_factory=list,
        description="Frequent rejection patterns to avoid",
    )


class AdaptivePrompt(BaseModel):
    """Structured prompt enhancement for one (species, feature) pair."""

    species: str
    feature_type: str
    base_prompt: str
    adaptations: PromptAdaptations
    confidence: float = Field(ge=0.0, le=1.0, description="Confidence in the adaptations")
    version: str = Field(description="Content hash of the adaptations")

    def render(self) -> str:
        """Compose the enhanced prompt text sent to the vision provider."""
        sections = [self.base_prompt.rstrip()]
        adaptations = self.adaptations

        if adaptations.species_context:
            sections.append(f"SPECIES-SPECIFIC GUIDANCE for {self.species}:\n{adaptations.species_context}")

        if adaptations.positioning_hints:
            hints = "\n".join(f"- {hint}" for hint in adaptations.positioning_hints)
            sections.append(
                f"LEARNED FEATURE PATTERNS:\n{hints}\n"
                "Note: Use these as reference points, not strict requirements"
            )

        if adaptations.feature_guidance:
            guidance = "\n".join(f"- {item}" for item in adaptations.feature_guidance)
            sections.append(f"FEATURE GUIDANCE for {self.feature_type}:\n{guidance}")

        if adaptations.common_mistakes:
            mistakes = "\n".join(f"- {item}" for item in adaptations.common_mistakes)
            sections.append(f"COMMON REJECTION PATTERNS TO AVOID:\n{mistakes}")

        if adaptations.quality_thresholds:
            thresholds = ", ".join(
                f"{name}={value:.2f}" for name, value in sorted(adaptations.quality_thresholds.items())
            )
            sections.append(f"QUALITY THRESHOLDS: {thresholds}")

        return "\n\n".join(sections)
