"""
Pydantic models for remote AI outputs and orchestration results.

The provider answers in camelCase JSON (projectType, autoFixable, ...); the
models accept both that and snake_case field names.
"""
import re
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

PROJECT_TYPES = ("Portfolio", "E-commerce", "Dashboard", "Web App", "Mobile App", "Website")

_SECTION_RE = re.compile(r"^##\s+(.+)$", re.MULTILINE)


class _ProviderModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProjectAnalysis(_ProviderModel):
    """
    Structured output of project analysis.

    Schema:
    {
      "projectType": "Portfolio | E-commerce | Dashboard | Web App | Mobile App | Website",
      "designStyle": "minimalist",
      "colorTheme": "ocean-breeze",
      "reasoning": "1-2 sentence explanation",
      "confidence": 0.0-1.0,
      "suggestedComponents": ["carousel"],
      "suggestedAnimations": ["fade-in"]
    }
    """

    project_type: str
    design_style: str = Field(..., min_length=1)
    color_theme: str = Field(..., min_length=1)
    reasoning: str = Field(..., min_length=1)
    confidence: float = Field(..., ge=0.0, le=1.0)
    suggested_components: List[str] = Field(default_factory=list)
    suggested_animations: List[str] = Field(default_factory=list)

    @field_validator("project_type")
    @classmethod
    def validate_project_type(cls, value: str) -> str:
        if value not in PROJECT_TYPES:
            raise ValueError(f"project_type must be one of {list(PROJECT_TYPES)}")
        return value


class DesignSuggestion(_ProviderModel):
    """One design suggestion for the current wizard selections."""

    type: Literal["improvement", "warning", "tip"]
    message: str = Field(..., min_length=1)
    reasoning: str = Field(..., min_length=1)
    auto_fixable: bool
    severity: Literal["low", "medium", "high"]


class SuggestionsResponse(_ProviderModel):
    suggestions: List[DesignSuggestion]


class PromptEnhancement(_ProviderModel):
    """Enhanced prompt plus the sections the model added."""

    original_prompt: str
    enhanced_prompt: str
    improvements: List[str] = Field(default_factory=list)
    added_sections: List[str] = Field(default_factory=list)


class WizardState(_ProviderModel):
    """Wizard selections that design suggestions are computed for."""

    project_type: str = "Website"
    project_name: Optional[str] = None
    design_style: Optional[str] = None
    color_theme: Optional[str] = None
    layout: Optional[str] = None
    background: Optional[str] = None
    components: List[str] = Field(default_factory=list)
    animations: List[str] = Field(default_factory=list)


class OrchestrationOutcome(BaseModel):
    """
    Result returned by AIOrchestrationService.

    `error_kind` names the classified failure that forced a fallback; it is
    None for cache and remote results.
    """

    model_config = ConfigDict(frozen=True)

    value: Any
    source: Literal["cache", "remote", "fallback"]
    latency_ms: int = Field(ge=0)
    cache_hit: bool = False
    error_kind: Optional[str] = None


class SchemaValidationError(Exception):
    """Raised when remote output fails schema validation."""

    def __init__(self, operation: str, message: str, raw_output: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.raw_output = raw_output


def validate_analysis_payload(payload: Any) -> ProjectAnalysis:
    """
    Validate raw JSON payload for project analysis.

    Raises:
        SchemaValidationError if validation fails.
    """
    try:
        return ProjectAnalysis.model_validate(payload)
    except ValidationError as exc:
        raise SchemaValidationError(
            operation="analysis",
            message=f"Invalid analysis payload: {exc}",
        ) from exc


def validate_suggestions_payload(payload: Any) -> List[DesignSuggestion]:
    """
    Validate raw JSON payload for design suggestions.

    Raises:
        SchemaValidationError if validation fails.
    """
    try:
        return SuggestionsResponse.model_validate(payload).suggestions
    except ValidationError as exc:
        raise SchemaValidationError(
            operation="suggestions",
            message=f"Invalid suggestions payload: {exc}",
        ) from exc


def extract_sections(text: str) -> List[str]:
    """Return `## Header` titles in order of appearance."""
    return [m.group(1).strip() for m in _SECTION_RE.finditer(text)]


_IMPROVEMENT_LABELS = [
    ("accessibility", "Added comprehensive accessibility requirements (WCAG 2.1 AA)"),
    ("performance", "Added performance optimization guidelines"),
    ("seo", "Added SEO best practices"),
    ("security", "Added security considerations"),
    ("testing", "Added testing recommendations"),
    ("code quality", "Added code quality standards"),
]


def parse_enhancement_text(response_text: str, original_prompt: str) -> PromptEnhancement:
    """
    Build a PromptEnhancement from the model's plain-text answer.

    Raises:
        SchemaValidationError if the answer is empty.
    """
    enhanced = (response_text or "").strip()
    if not enhanced:
        raise SchemaValidationError(
            operation="enhancement",
            message="Empty enhancement response",
            raw_output=response_text,
        )

    original_sections = set(extract_sections(original_prompt))
    added = [s for s in extract_sections(enhanced) if s not in original_sections]
    lowered = [s.lower() for s in added]
    improvements = [
        label for needle, label in _IMPROVEMENT_LABELS
        if any(needle in s for s in lowered)
    ]
    return PromptEnhancement(
        original_prompt=original_prompt,
        enhanced_prompt=enhanced,
        improvements=improvements,
        added_sections=added,
    )
