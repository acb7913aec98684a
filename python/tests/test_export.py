"""Tests for artifact export."""

from codeloom.services.export import (
    ATTRIBUTION_HTML,
    SPONSORED_NOTICE_HTML,
    export_artifact,
    render_footer,
)
from codeloom.services.types import Tier


class TestRenderFooter:
    def test_free_tier_carries_sponsored_notice(self):
        footer = render_footer(Tier.FREE)
        assert ATTRIBUTION_HTML in footer
        assert SPONSORED_NOTICE_HTML in footer

    def test_privileged_tiers_only_carry_attribution(self):
        for tier in (Tier.PREMIUM, Tier.ADMIN):
            footer = render_footer(tier)
            assert ATTRIBUTION_HTML in footer
            assert SPONSORED_NOTICE_HTML not in footer


class TestExportArtifact:
    def test_empty_artifact(self):
        assert export_artifact("", Tier.FREE) == ""

    def test_footer_inserted_before_body_close(self):
        code = "<html><body><h1>Hi</h1></body></html>"
        exported = export_artifact(code, Tier.PREMIUM)
        assert exported == (
            "<html><body><h1>Hi</h1>" + render_footer(Tier.PREMIUM) + "</body></html>"
        )

    def test_only_first_body_close_is_used(self):
        code = "<body>a</body><template></body></template>"
        exported = export_artifact(code, Tier.FREE)
        assert exported.count("<footer") == 1
        assert exported.index("<footer") < exported.index("</body>")

    def test_footer_appended_without_body(self):
        code = "console.log('hi')"
        assert export_artifact(code, Tier.FREE) == code + render_footer(Tier.FREE)
