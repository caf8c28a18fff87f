"""
Prompt templates for the remote model.
"""
from wizard_ai.services.ai.schema import WizardState

ANALYSIS_PROMPT = """Analyze project and recommend design choices.

"{description}"

JSON format:
{{
  "projectType": "Portfolio|E-commerce|Dashboard|Web App|Mobile App|Website",
  "designStyle": "minimalist|glassmorphism|material-design|neumorphism|brutalism|modern",
  "colorTheme": "ocean-breeze|sunset-warmth|monochrome-modern|forest-green|tech-neon|purple-haze",
  "reasoning": "1-2 sentence explanation",
  "confidence": 0.85,
  "suggestedComponents": ["id1", "id2"],
  "suggestedAnimations": ["id1"]
}}"""

SUGGESTIONS_PROMPT = """Analyze design compatibility. Provide 3-5 suggestions.

Project: {project_type}
Style: {design_style}
Colors: {color_theme}
Components: {components}
Background: {background}
Animations: {animations}

JSON format:
{{
  "suggestions": [{{
    "type": "improvement|warning|tip",
    "message": "actionable text",
    "reasoning": "why it matters",
    "autoFixable": boolean,
    "severity": "low|medium|high"
  }}]
}}"""

ENHANCEMENT_PROMPT = """Enhance this prompt with professional details. Add sections for:
1. Accessibility (WCAG 2.1 AA, keyboard nav, ARIA, contrast 4.5:1)
2. Performance (code splitting, image optimization, <200KB bundle, Lighthouse 90+)
3. SEO (meta tags, semantic HTML, mobile-first)
4. Security (validation, HTTPS, CSP, XSS/CSRF protection)
5. Testing (unit, integration, E2E, accessibility)
6. Code Quality (TypeScript strict, ESLint, error boundaries)

Original:
{prompt}

Return complete enhanced prompt with ## headers for new sections."""


def build_analysis_prompt(description: str) -> str:
    return ANALYSIS_PROMPT.format(description=description)


def build_suggestions_prompt(state: WizardState) -> str:
    return SUGGESTIONS_PROMPT.format(
        project_type=state.project_type,
        design_style=state.design_style or "None",
        color_theme=state.color_theme or "None",
        components=", ".join(state.components) or "None",
        background=state.background or "None",
        animations=", ".join(state.animations) or "None",
    )


def build_enhancement_prompt(prompt: str) -> str:
    return ENHANCEMENT_PROMPT.format(prompt=prompt)
