"""Artifact export with attribution footer."""

from codeloom.services.types import Tier

BODY_CLOSE = "</body>"

ATTRIBUTION_HTML = 'Built with AI by <strong style="color: #9333ea;">Codeloom</strong>'
SPONSORED_NOTICE_HTML = (
    '<br/><span style="font-size: 10px; color: #999;">'
    "This site contains sponsored content and affiliate links."
    "</span>"
)
FOOTER_STYLE = (
    "width: 100%; padding: 20px; text-align: center; background: #f8f9fa; "
    "color: #6c757d; font-family: sans-serif; font-size: 12px; "
    "border-top: 1px solid #e9ecef; margin-top: auto;"
)


def render_footer(tier: Tier) -> str:
    """Attribution footer; non-privileged tiers also carry the sponsored notice."""
    content = ATTRIBUTION_HTML
    if not tier.is_privileged:
        content += SPONSORED_NOTICE_HTML
    return f'<footer style="{FOOTER_STYLE}">{content}</footer>'


def export_artifact(code: str, tier: Tier) -> str:
    """Return the artifact with the footer inserted before the first </body>.

    Documents without a </body> get the footer appended. An empty artifact
    exports as an empty string.
    """
    if not code:
        return ""
    footer = render_footer(tier)
    if BODY_CLOSE in code:
        return code.replace(BODY_CLOSE, footer + BODY_CLOSE, 1)
    return code + footer
