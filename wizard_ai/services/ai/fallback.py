"""
Deterministic local substitutes for the remote AI operations.

Fallbacks run when the remote result cannot be used (cache miss plus open
circuit, rate limit, classified error). They must never raise.
"""
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from wizard_ai.services.ai.schema import (
    DesignSuggestion,
    ProjectAnalysis,
    PromptEnhancement,
    WizardState,
    parse_enhancement_text,
)

# Keyword tables for the rule-based analyzer (substring match on lowercase text).
PROJECT_TYPE_KEYWORDS: Dict[str, List[str]] = {
    "Portfolio": [
        "portfolio", "showcase", "personal site", "personal website", "work samples",
        "projects", "creative work", "my work", "resume site", "freelancer",
    ],
    "E-commerce": [
        "shop", "store", "sell", "products", "ecommerce", "e-commerce", "marketplace",
        "shopping", "cart", "checkout", "payment", "retail",
    ],
    "Dashboard": [
        "dashboard", "admin", "analytics", "metrics", "data visualization", "statistics",
        "reporting", "insights", "kpi", "monitoring", "control panel",
    ],
    "Web App": [
        "app", "application", "platform", "tool", "software", "saas", "web application",
        "productivity", "webapp",
    ],
    "Mobile App": [
        "mobile", "ios", "android", "phone", "tablet", "mobile app", "smartphone",
        "mobile-first", "touch",
    ],
    "Website": [
        "website", "site", "web", "landing page", "homepage", "web page", "company site",
        "business site", "marketing site", "blog",
    ],
}

DESIGN_STYLE_KEYWORDS: Dict[str, List[str]] = {
    "material-design": ["material", "material design", "google design", "elevation", "cards"],
    "minimalist": [
        "minimal", "minimalist", "clean", "simple", "sleek", "uncluttered",
        "white space", "spacious", "zen",
    ],
    "neumorphism": ["neumorphism", "soft ui", "neomorphism", "tactile", "embossed", "soft shadows"],
    "glassmorphism": ["glass", "glassmorphism", "frosted", "blur", "translucent", "transparent"],
    "brutalism": ["brutalism", "brutalist", "bold", "raw", "edgy", "stark", "industrial"],
    "modern": ["modern", "contemporary", "fresh look", "trendy"],
}

COLOR_THEME_KEYWORDS: Dict[str, List[str]] = {
    "ocean-breeze": ["blue", "ocean", "sea", "water", "calm", "aqua", "teal", "cyan", "azure"],
    "sunset-warmth": ["orange", "warm", "sunset", "red", "yellow", "amber", "gold", "autumn"],
    "forest-green": ["green", "forest", "nature", "earth", "eco", "leaf", "plant", "sustainable"],
    "purple-haze": ["purple", "violet", "royal", "elegant", "luxury", "lavender", "plum"],
    "monochrome-modern": [
        "black", "white", "gray", "grey", "monochrome", "neutral", "grayscale", "timeless",
    ],
    "tech-neon": ["neon", "bright", "electric", "cyber", "futuristic", "glow", "tech", "digital"],
}

DEFAULT_PROJECT_TYPE = "Website"
DEFAULT_DESIGN_STYLE = "minimalist"
DEFAULT_COLOR_THEME = "monochrome-modern"
DEFAULT_CONFIDENCE = 0.6


def _best_match(text: str, table: Dict[str, List[str]], saturation: int) -> Tuple[Optional[str], float, List[str]]:
    """Option with the most keyword hits, its confidence (hits / saturation, capped at 1) and the hits."""
    best: Optional[str] = None
    best_hits: List[str] = []
    for option, keywords in table.items():
        hits = [k for k in keywords if k in text]
        if len(hits) > len(best_hits):
            best, best_hits = option, hits
    if best is None:
        return None, 0.0, []
    return best, min(len(best_hits) / saturation, 1.0), best_hits


def keyword_analyze(description: str) -> ProjectAnalysis:
    """Rule-based project analysis from keyword matches."""
    text = (description or "").lower()
    project_type, type_conf, type_hits = _best_match(text, PROJECT_TYPE_KEYWORDS, 3)
    design_style, style_conf, style_hits = _best_match(text, DESIGN_STYLE_KEYWORDS, 2)
    color_theme, color_conf, color_hits = _best_match(text, COLOR_THEME_KEYWORDS, 2)

    detected = type_hits + style_hits + color_hits
    if detected:
        reasoning = "Selected from keywords in the description: " + ", ".join(sorted(set(detected)))
    else:
        reasoning = "No recognizable keywords; using default selections"

    return ProjectAnalysis(
        project_type=project_type or DEFAULT_PROJECT_TYPE,
        design_style=design_style or DEFAULT_DESIGN_STYLE,
        color_theme=color_theme or DEFAULT_COLOR_THEME,
        reasoning=reasoning,
        confidence=max(type_conf, style_conf, color_conf) or DEFAULT_CONFIDENCE,
    )


def default_suggestions(state: WizardState) -> List[DesignSuggestion]:
    """A few static compatibility checks on the wizard selections."""
    suggestions: List[DesignSuggestion] = []
    if not state.design_style:
        suggestions.append(
            DesignSuggestion(
                type="tip",
                message="Pick a design style before choosing components",
                reasoning="Components are easier to match once the overall style is fixed",
                auto_fixable=False,
                severity="low",
            )
        )
    if len(state.animations) > 3:
        suggestions.append(
            DesignSuggestion(
                type="warning",
                message="Reduce the number of animations",
                reasoning="More than three concurrent animations can hurt performance and accessibility",
                auto_fixable=False,
                severity="medium",
            )
        )
    if state.design_style == "brutalism" and state.color_theme == "ocean-breeze":
        suggestions.append(
            DesignSuggestion(
                type="improvement",
                message="Consider a higher-contrast color theme for a brutalist style",
                reasoning="Brutalist layouts rely on stark contrast that soft palettes weaken",
                auto_fixable=True,
                severity="low",
            )
        )
    return suggestions


_STANDARD_SECTIONS = """

## Accessibility
- Meet WCAG 2.1 AA: keyboard navigation, ARIA labels, 4.5:1 color contrast

## Performance
- Code splitting, optimized images, bundle under 200KB, Lighthouse score 90+

## SEO
- Meta tags, semantic HTML, mobile-first layout

## Security
- Input validation, HTTPS only, Content Security Policy, XSS/CSRF protection

## Testing
- Unit, integration, end-to-end and accessibility tests

## Code Quality
- Strict typing, linting, error boundaries"""


def template_enhancement(prompt: str) -> PromptEnhancement:
    """Append the standard professional sections to the prompt."""
    return parse_enhancement_text(prompt.rstrip() + _STANDARD_SECTIONS, prompt)


@dataclass
class Fallbacks:
    """Fallback per operation. A missing entry is a configuration error."""

    analysis: Optional[Callable[[str], ProjectAnalysis]] = keyword_analyze
    suggestions: Optional[Callable[[WizardState], List[DesignSuggestion]]] = default_suggestions
    enhancement: Optional[Callable[[str], PromptEnhancement]] = template_enhancement

    def for_operation(self, operation: str) -> Optional[Callable]:
        return getattr(self, operation, None)


# Pre-computed analyses for frequently entered descriptions, used to warm the cache.
COMMON_PROJECT_ANALYSES: List[Tuple[str, ProjectAnalysis]] = [
    (
        "analysis:portfolio website to showcase my work",
        ProjectAnalysis(
            project_type="Portfolio",
            design_style="minimalist",
            color_theme="monochrome-modern",
            reasoning="Portfolio sites benefit from clean, minimalist design that puts focus on the work itself",
            confidence=0.9,
            suggested_components=["carousel", "accordion"],
            suggested_animations=["fade-in"],
        ),
    ),
    (
        "analysis:developer portfolio with projects",
        ProjectAnalysis(
            project_type="Portfolio",
            design_style="glassmorphism",
            color_theme="tech-neon",
            reasoning="Developer portfolios can showcase technical skills with glassmorphism and tech-inspired colors",
            confidence=0.87,
            suggested_components=["tabs", "accordion"],
        ),
    ),
    (
        "analysis:online store for selling products",
        ProjectAnalysis(
            project_type="E-commerce",
            design_style="modern",
            color_theme="sunset-warmth",
            reasoning="E-commerce sites need modern, trustworthy design with warm, inviting colors",
            confidence=0.92,
            suggested_components=["carousel", "tabs"],
            suggested_animations=["fade-in"],
        ),
    ),
    (
        "analysis:admin dashboard for data visualization",
        ProjectAnalysis(
            project_type="Dashboard",
            design_style="material-design",
            color_theme="tech-neon",
            reasoning="Dashboards need clear, organized layouts with Material Design principles",
            confidence=0.91,
            suggested_components=["tabs", "accordion"],
        ),
    ),
    (
        "analysis:web application for productivity",
        ProjectAnalysis(
            project_type="Web App",
            design_style="modern",
            color_theme="ocean-breeze",
            reasoning="Productivity apps need clean, distraction-free interfaces with calming colors",
            confidence=0.9,
            suggested_components=["tabs", "accordion"],
            suggested_animations=["fade-in"],
        ),
    ),
    (
        "analysis:mobile app for social networking",
        ProjectAnalysis(
            project_type="Mobile App",
            design_style="modern",
            color_theme="purple-haze",
            reasoning="Social apps need engaging, modern design with vibrant colors",
            confidence=0.89,
            suggested_components=["carousel"],
            suggested_animations=["slide-in"],
        ),
    ),
    (
        "analysis:landing page",
        ProjectAnalysis(
            project_type="Website",
            design_style="minimalist",
            color_theme="sunset-warmth",
            reasoning="Landing pages work best with minimalist design and warm, inviting colors",
            confidence=0.9,
            suggested_components=["carousel"],
            suggested_animations=["fade-in"],
        ),
    ),
    (
        "analysis:blog website",
        ProjectAnalysis(
            project_type="Website",
            design_style="minimalist",
            color_theme="monochrome-modern",
            reasoning="Blogs benefit from clean, readable minimalist design",
            confidence=0.91,
            suggested_components=["accordion"],
        ),
    ),
]


def warming_budget(max_size: int, current_size: int) -> int:
    """Entries to warm: at most 30% of capacity, never more than the free space."""
    return max(0, min(int(max_size * 0.3), max_size - current_size))
