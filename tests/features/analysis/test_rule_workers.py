"""
Rule worker tests over small hand-written pages.

Each worker gets one page that trips its rules and one clean page that must
produce no findings at all.
"""
import json

import pytest

from sitecraft.features.analysis.exceptions import AssetUnavailable, RuleEvaluationError
from sitecraft.features.analysis.models.analysis import AnalysisCategory
from sitecraft.features.analysis.models.analysis_job import WorkerKind
from sitecraft.features.analysis.models.asset import AssetKind
from sitecraft.features.analysis.models.finding import FindingSeverity
from sitecraft.features.analysis.schemas.analysis import AssetRefs
from sitecraft.features.analysis.services.rules import PageSnapshot, RuleWorker, default_registry
from sitecraft.features.analysis.services.rules.accessibility import (
    AriaWorker,
    ColorContrastWorker,
    FormsWorker,
    KeyboardWorker,
    MediaWorker,
    StructureWorker,
    TablesWorker,
    contrast_ratio,
    is_large_text,
    parse_color,
)
from sitecraft.features.analysis.services.rules.performance import CoreWebVitalsWorker, ImageOptimizationWorker
from sitecraft.features.analysis.services.rules.seo import OnPageSeoWorker, TechnicalSeoWorker

from conftest import make_asset_refs


def snapshot(html: str = "", final_url: str = "https://example.com/", **kwargs) -> PageSnapshot:
    return PageSnapshot(
        analysis_id="a1",
        requested_url=final_url,
        final_url=final_url,
        status_code=200,
        html=html,
        **kwargs,
    )


def by_key(findings):
    return {f.rule_key: f for f in findings}


# ============================================================================
# Contract
# ============================================================================

class TestWorkerContract:
    def test_default_registry_covers_every_kind(self):
        registry = default_registry()

        assert registry.kinds() == list(WorkerKind)
        for kind in WorkerKind:
            worker = registry.get(kind)
            assert worker.kind == kind
            assert worker.rule_keys
            assert set(worker.remediations) <= worker.rule_keys

    def test_categories(self):
        registry = default_registry()

        assert registry.get(WorkerKind.tables).category == AnalysisCategory.accessibility
        assert registry.get(WorkerKind.on_page_seo).category == AnalysisCategory.seo
        assert registry.get(WorkerKind.core_web_vitals).category == AnalysisCategory.performance

    @pytest.mark.parametrize("kind", list(WorkerKind))
    def test_empty_page_only_emits_own_rule_keys(self, kind):
        worker = default_registry().get(kind)

        findings = worker.run(snapshot(""))

        assert {f.rule_key for f in findings} <= worker.rule_keys

    def test_unknown_rule_key_raises(self):
        class Rogue(RuleWorker):
            kind = WorkerKind.aria
            rule_keys = frozenset({"ACC_ARIA_01_ROLE_INVALID"})

            def evaluate(self, snapshot):
                return [self.finding("SEO_TEC_05_CANONICAL_MISSING", FindingSeverity.minor, "wrong family")]

        with pytest.raises(RuleEvaluationError):
            Rogue().run(snapshot(""))

    def test_grouped_folds_repeated_violations(self):
        page = snapshot("<body>" + "".join(f'<img src="/{i}.png" id="i{i}">' for i in range(7)) + "</body>")

        finding = by_key(MediaWorker().evaluate(page))["ACC_IMG_01_ALT_TEXT_MISSING"]

        assert finding.metric_value == 7.0
        assert finding.location.startswith("img#i0, img#i1")
        assert finding.location.endswith("(+2 more)")
        assert finding.message == "Image has no text alternative (7 found)"
        assert finding.remediation["wcag"] == "1.1.1"


class TestPageSnapshotLoad:
    def test_loads_every_captured_asset(self, asset_store):
        metadata = {"headers": {"Content-Type": "text/html"}, "timing": {"lcp_ms": 1200}}
        refs = make_asset_refs(
            "a1",
            asset_store,
            html="<html><title>Hi</title></html>",
            metadata=json.dumps(metadata),
            robots_txt="User-agent: *\nAllow: /",
            screenshot_desktop=b"\x89PNG",
        )

        page = PageSnapshot.load(asset_store, refs)

        assert page.dom.title.string == "Hi"
        assert page.headers == {"content-type": "text/html"}
        assert page.timing == {"lcp_ms": 1200}
        assert page.robots_txt.startswith("User-agent")
        assert page.sitemap_xml is None
        assert page.screenshots == frozenset({AssetKind.screenshot_desktop})

    def test_missing_html_reference(self, asset_store):
        refs = AssetRefs(
            analysis_id="a1", locators={}, requested_url="https://example.com",
            final_url="https://example.com/", status_code=200,
        )

        with pytest.raises(AssetUnavailable):
            PageSnapshot.load(asset_store, refs)

    def test_referenced_asset_not_in_store(self, asset_store):
        with pytest.raises(AssetUnavailable):
            PageSnapshot.load(asset_store, make_asset_refs("a1"))

    def test_unreadable_metadata(self, asset_store):
        refs = make_asset_refs("a1", asset_store, metadata="{not json")

        with pytest.raises(AssetUnavailable):
            PageSnapshot.load(asset_store, refs)


# ============================================================================
# Accessibility
# ============================================================================

class TestAriaWorker:
    def test_violations(self):
        page = snapshot("""
            <body>
              <div role="bogus">x</div>
              <div role="checkbox">Accept</div>
              <button aria-disabled="maybe">Go</button>
              <nav role="navigation"></nav>
              <div aria-hidden="true"><a href="/hidden">hidden</a></div>
              <span aria-labelledby="ghost">label</span>
              <span aria-describedby="ghost">desc</span>
              <button aria-haspopup="menu">Menu</button>
              <button aria-controls="nowhere">Toggle</button>
            </body>
        """)

        findings = by_key(AriaWorker().evaluate(page))

        assert set(findings) == {
            "ACC_ARIA_01_ROLE_INVALID",
            "ACC_ARIA_02_REQUIRED_ATTR_MISSING",
            "ACC_ARIA_03_INVALID_ATTR_VALUE",
            "ACC_ARIA_04_REDUNDANT_ROLE",
            "ACC_ARIA_05_HIDDEN_FOCUSABLE",
            "ACC_ARIA_07_LABELLEDBY_MISSING",
            "ACC_ARIA_08_DESCRIBEDBY_MISSING",
            "ACC_ARIA_09_EXPANDED_MISSING",
            "ACC_ARIA_10_CONTROLS_MISSING",
        }
        assert findings["ACC_ARIA_04_REDUNDANT_ROLE"].severity == FindingSeverity.minor

    def test_native_checkbox_with_role_is_fine(self):
        page = snapshot('<input type="checkbox" role="checkbox" aria-label="Accept">')

        assert AriaWorker().evaluate(page) == []

    def test_clean_page(self):
        page = snapshot("""
            <main>
              <h1 id="title">Title</h1>
              <section aria-labelledby="title">
                <button aria-haspopup="menu" aria-expanded="false" aria-controls="menu">Menu</button>
                <ul id="menu" role="menu"><li role="menuitem">One</li></ul>
              </section>
            </main>
        """)

        assert AriaWorker().evaluate(page) == []


class TestColorContrast:
    def test_helpers(self):
        assert parse_color("#fff") == (255, 255, 255, 1.0)
        assert parse_color("rgba(0, 0, 0, 0.5)") == (0.0, 0.0, 0.0, 0.5)
        assert parse_color("transparent") is None
        assert contrast_ratio("rgb(0, 0, 0)", "rgb(255, 255, 255)") == 21.0
        assert contrast_ratio("rgb(255, 255, 255)", "rgb(255, 255, 255)") == 1.0
        assert is_large_text(24, "400")
        assert is_large_text(19, "bold")
        assert not is_large_text(19, "normal")

    def test_low_contrast_text(self):
        page = snapshot(
            '<head><meta name="viewport" content="width=device-width, user-scalable=no"></head>',
            metadata={"text_styles": [
                {"selector": "p.muted", "color": "rgb(170, 170, 170)", "background_color": "rgb(255, 255, 255)",
                 "font_size_px": 16, "font_weight": "400"},
                {"selector": "h1", "color": "rgb(150, 150, 150)", "background_color": "rgb(255, 255, 255)",
                 "font_size_px": 32, "font_weight": "700"},
                {"selector": "p.body", "color": "rgb(0, 0, 0)", "background_color": "rgb(255, 255, 255)",
                 "font_size_px": 16, "font_weight": "400"},
            ]},
        )

        findings = by_key(ColorContrastWorker().evaluate(page))

        assert set(findings) == {
            "ACC_CLR_01_TEXT_CONTRAST_RATIO",
            "ACC_CLR_02_LARGE_TEXT_CONTRAST",
            "ACC_CLR_07_REFLOW_CONTENT",
        }
        assert findings["ACC_CLR_01_TEXT_CONTRAST_RATIO"].location == "p.muted"
        assert findings["ACC_CLR_02_LARGE_TEXT_CONTRAST"].location == "h1"

    def test_no_measurements_no_findings(self):
        page = snapshot('<head><meta name="viewport" content="width=device-width, initial-scale=1"></head>')

        assert ColorContrastWorker().evaluate(page) == []


class TestKeyboardWorker:
    def test_violations(self):
        page = snapshot("""
            <head><style>a:focus { color: red; outline: none; }</style></head>
            <body>
              <a href="/a" accesskey="s">A</a>
              <a href="/b" accesskey="S">B</a>
              <input tabindex="3">
              <div onclick="go()">Open</div>
            </body>
        """)

        findings = by_key(KeyboardWorker().evaluate(page))

        assert set(findings) == {
            "ACC_KBD_01_FOCUS_VISIBLE",
            "ACC_KBD_03_TABINDEX_POSITIVE",
            "ACC_KBD_04_INTERACTIVE_NOT_FOCUSABLE",
            "ACC_KBD_06_BYPASS_BLOCKS",
            "ACC_KBD_08_ACCESS_KEY_DUPLICATE",
        }
        assert findings["ACC_KBD_08_ACCESS_KEY_DUPLICATE"].location == "accesskey=s"

    def test_clean_page(self):
        page = snapshot("""
            <body>
              <a href="#main">Skip to content</a>
              <main id="main"><div onclick="go()" tabindex="0" role="button">Open</div></main>
            </body>
        """)

        assert KeyboardWorker().evaluate(page) == []


class TestMediaWorker:
    def test_violations(self):
        page = snapshot("""
            <body>
              <img src="/a.png">
              <img src="/b.png" alt="photo">
              <a href="/home"><img src="/c.png" alt="Home"></a>
              <div><a href="/home">Home</a></div>
              <video src="/v.mp4"></video>
              <div><audio src="/a.mp3"></audio></div>
            </body>
        """)

        findings = by_key(MediaWorker().evaluate(page))

        assert set(findings) == {
            "ACC_IMG_01_ALT_TEXT_MISSING",
            "ACC_IMG_03_ALT_TEXT_INFORMATIVE",
            "ACC_MED_01_VIDEO_CAPTIONS",
            "ACC_MED_02_AUDIO_TRANSCRIPT",
            "ACC_MED_03_VIDEO_AUDIO_DESC",
        }
        assert findings["ACC_IMG_01_ALT_TEXT_MISSING"].severity == FindingSeverity.critical

    def test_alt_repeating_link_text(self):
        page = snapshot('<a href="/docs"><img src="/d.svg" alt="Docs"> Docs</a>')

        assert set(by_key(MediaWorker().evaluate(page))) == {"ACC_IMG_05_IMAGE_TEXT_REDUNDANT"}

    def test_clean_page(self):
        page = snapshot("""
            <body>
              <img src="/team.jpg" alt="The support team at the Lagos office">
              <img src="/divider.png" alt="">
              <img src="/spacer.gif" role="presentation">
              <video src="/v.mp4">
                <track kind="captions" src="/v.vtt"><track kind="descriptions" src="/d.vtt">
              </video>
              <div><audio src="/a.mp3"></audio><a href="/t">Read the transcript</a></div>
            </body>
        """)

        assert MediaWorker().evaluate(page) == []


class TestFormsWorker:
    def test_violations(self):
        page = snapshot("""
            <form>
              <input type="text" name="q">
              <input type="email" id="e" name="email" placeholder="Email">
              <label for="missing">Phone</label>
              <fieldset><input type="checkbox" id="c"><label for="c">Ok</label></fieldset>
              <button></button>
            </form>
        """)

        findings = by_key(FormsWorker().evaluate(page))

        assert set(findings) == {
            "ACC_FRM_01_LABEL_MISSING",
            "ACC_FRM_02_LABEL_FOR_ID_MISMATCH",
            "ACC_FRM_04_FIELDSET_LEGEND_MISSING",
            "ACC_FRM_09_PLACEHOLDER_LABEL",
            "ACC_FRM_10_BUTTON_NAME_MISSING",
            "ACC_FRM_13_AUTOCOMPLETE_MISSING",
        }
        assert findings["ACC_FRM_01_LABEL_MISSING"].metric_value == 1.0

    def test_ungrouped_radio_buttons(self):
        page = snapshot("""
            <label><input type="radio" name="plan" value="a"> A</label>
            <label><input type="radio" name="plan" value="b"> B</label>
        """)

        finding = by_key(FormsWorker().evaluate(page))["ACC_FRM_04_FIELDSET_LEGEND_MISSING"]
        assert finding.location == "input[name=plan]"

    def test_clean_form(self):
        page = snapshot("""
            <form>
              <label for="n">Name</label><input id="n" name="fullname" autocomplete="name">
              <label>Search <input type="search" name="q"></label>
              <input type="submit" value="Send">
              <button aria-label="Close"><svg></svg></button>
            </form>
        """)

        assert FormsWorker().evaluate(page) == []


class TestStructureWorker:
    def test_violations(self):
        page = snapshot("""
            <html><head></head><body>
              <h2>Intro</h2><h4>Deep</h4>
              <ul><div>not a list item</div></ul>
            </body></html>
        """)

        assert set(by_key(StructureWorker().evaluate(page))) == {
            "ACC_STR_01_HEADING_ORDER",
            "ACC_STR_02_NO_H1",
            "ACC_STR_04_PAGE_LANG_MISSING",
            "ACC_STR_06_PAGE_TITLE_MISSING",
            "ACC_STR_10_LANDMARK_MISSING",
            "ACC_STR_12_LIST_STRUCTURE_INVALID",
        }

    def test_title_landmarks_and_skip_links(self):
        page = snapshot("""
            <html lang="en"><head><title>Home</title></head><body>
              <a href="#nowhere">Skip to content</a>
              <nav></nav><nav></nav>
              <main><h1>One</h1><h1>Two</h1></main>
            </body></html>
        """)

        findings = by_key(StructureWorker().evaluate(page))

        assert set(findings) == {
            "ACC_STR_03_MULTIPLE_H1",
            "ACC_STR_07_PAGE_TITLE_UNINFORMATIVE",
            "ACC_STR_09_SKIP_LINK_BROKEN",
            "ACC_STR_11_LANDMARK_DUPLICATE",
        }
        assert findings["ACC_STR_11_LANDMARK_DUPLICATE"].metric_value == 2.0

    def test_clean_page(self):
        page = snapshot("""
            <html lang="en"><head><title>Pricing plans for teams</title></head><body>
              <a href="#content">Skip to content</a>
              <nav aria-label="Primary"></nav>
              <main id="content"><h1>Pricing</h1><h2>Plans</h2><ul><li>Starter</li><li>Team</li></ul></main>
            </body></html>
        """)

        assert StructureWorker().evaluate(page) == []


class TestTablesWorker:
    def test_violations(self):
        page = snapshot("""
            <table id="plain"><tr><td>a</td><td>b</td></tr><tr><td>1</td><td>2</td></tr></table>
            <table id="nocaption"><tr><th>Name</th><th>Qty</th></tr><tr><td>x</td><td>1</td></tr></table>
            <table id="noscope"><caption>Matrix</caption>
              <tr><th>h</th><th>h2</th></tr><tr><th>r</th><td>1</td></tr></table>
            <table id="merged"><caption>Merged</caption>
              <tr><th scope="col">a</th><th scope="col">b</th></tr><tr><td colspan="2">x</td></tr></table>
            <table id="layout" role="presentation"><tr><th>x</th></tr></table>
        """)

        findings = by_key(TablesWorker().evaluate(page))

        assert {key: f.location for key, f in findings.items()} == {
            "ACC_TBL_01_HEADER_MISSING": "table#plain",
            "ACC_TBL_02_CAPTION_MISSING": "table#nocaption",
            "ACC_TBL_03_SCOPE_MISSING": "table#noscope",
            "ACC_TBL_04_COMPLEX_TABLE_HEADERS": "table#merged",
            "ACC_TBL_05_LAYOUT_TABLE_HEADERS": "table#layout",
        }

    def test_clean_tables(self):
        page = snapshot("""
            <table><caption>Plans</caption>
              <tr><th scope="col">Plan</th><th scope="col">Price</th></tr>
              <tr><td>Team</td><td>$10</td></tr>
            </table>
            <table role="presentation"><tr><td>layout</td></tr></table>
            <table><tr><td>single row</td></tr></table>
        """)

        assert TablesWorker().evaluate(page) == []


# ============================================================================
# SEO
# ============================================================================

SITEMAP = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9"><url><loc>https://example.com/</loc></url></urlset>'
)
CLEAN_HEAD = """
    <head>
      <link rel="canonical" href="https://example.com/">
      <meta name="viewport" content="width=device-width, initial-scale=1">
      <script type="application/ld+json">{"@type": "Organization", "name": "Example"}</script>
      <link rel="alternate" hreflang="en-gb" href="https://example.com/uk/">
    </head>
"""


class TestTechnicalSeoWorker:
    def test_bare_http_page(self):
        page = snapshot("<html><head></head><body></body></html>", final_url="http://example.com/")

        findings = by_key(TechnicalSeoWorker().evaluate(page))

        assert set(findings) == {
            "SEO_TEC_01_ROBOTS_TXT_MISSING",
            "SEO_TEC_03_SITEMAP_MISSING",
            "SEO_TEC_05_CANONICAL_MISSING",
            "SEO_TEC_07_HTTPS_MISSING",
            "SEO_TEC_08_MOBILE_FRIENDLY",
        }
        assert findings["SEO_TEC_08_MOBILE_FRIENDLY"].severity == FindingSeverity.critical

    def test_clean_page(self):
        page = snapshot(
            f"<html>{CLEAN_HEAD}<body></body></html>",
            robots_txt="User-agent: *\nAllow: /\nSitemap: https://example.com/sitemap.xml\n",
            sitemap_xml=SITEMAP,
        )

        assert TechnicalSeoWorker().evaluate(page) == []

    def test_sitemap_declared_in_robots_is_enough(self):
        page = snapshot(
            f"<html>{CLEAN_HEAD}</html>",
            robots_txt="User-agent: *\nDisallow: /admin\nSitemap: https://cdn.example.com/sitemaps/index.xml",
        )

        assert TechnicalSeoWorker().evaluate(page) == []

    def test_robots_blocking_everything(self):
        page = snapshot(f"<html>{CLEAN_HEAD}</html>", robots_txt="User-agent: *\nDisallow: /\n", sitemap_xml=SITEMAP)

        finding = by_key(TechnicalSeoWorker().evaluate(page))["SEO_TEC_02_ROBOTS_TXT_ERRORS"]
        assert finding.severity == FindingSeverity.critical

    def test_robots_unknown_directive(self):
        page = snapshot(
            f"<html>{CLEAN_HEAD}</html>",
            robots_txt="User-agent: *\nDisalow: /tmp\nAllow: /\n",
            sitemap_xml=SITEMAP,
        )

        finding = by_key(TechnicalSeoWorker().evaluate(page))["SEO_TEC_02_ROBOTS_TXT_ERRORS"]
        assert finding.severity == FindingSeverity.serious
        assert "disalow" in finding.message

    @pytest.mark.parametrize("sitemap", ["<urlset><url>", "<html></html>", "<urlset></urlset>"])
    def test_broken_sitemap(self, sitemap):
        page = snapshot(f"<html>{CLEAN_HEAD}</html>", robots_txt="User-agent: *\nAllow: /", sitemap_xml=sitemap)

        assert set(by_key(TechnicalSeoWorker().evaluate(page))) == {"SEO_TEC_04_SITEMAP_ERRORS"}

    def test_markup_problems(self):
        page = snapshot(
            """
            <html><head>
              <link rel="canonical" href="https://other.example.org/">
              <meta name="viewport" content="width=1024">
              <meta name="robots" content="noindex, follow">
              <script type="application/ld+json">{"@type": "Organization",</script>
              <link rel="alternate" hreflang="english" href="https://example.com/en/">
            </head></html>
            """,
            robots_txt="User-agent: *\nAllow: /",
            sitemap_xml=SITEMAP,
        )

        findings = by_key(TechnicalSeoWorker().evaluate(page))

        assert set(findings) == {
            "SEO_TEC_06_CANONICAL_SELF_REFERENCE",
            "SEO_TEC_08_MOBILE_FRIENDLY",
            "SEO_TEC_09_STRUCTURED_DATA_VALIDATION",
            "SEO_TEC_10_HREFLANG_ERRORS",
            "SEO_ROBOTS_BLOCKING",
        }
        assert findings["SEO_TEC_08_MOBILE_FRIENDLY"].severity == FindingSeverity.serious
        assert findings["SEO_ROBOTS_BLOCKING"].location == "meta[name=robots]"

    def test_noindex_header(self):
        page = snapshot(
            f"<html>{CLEAN_HEAD}</html>",
            robots_txt="User-agent: *\nAllow: /",
            sitemap_xml=SITEMAP,
            metadata={"headers": {"X-Robots-Tag": "noindex"}},
        )

        finding = by_key(TechnicalSeoWorker().evaluate(page))["SEO_ROBOTS_BLOCKING"]
        assert finding.location == "x-robots-tag"


def content_page(body: str = "", title: str = "Team pricing plans and features | Example",
                 description: str = ("Compare plans " * 10).strip()) -> str:
    words = " ".join(["word"] * 320)
    return f"""
        <html><head>
          <title>{title}</title>
          <meta name="description" content="{description}">
        </head><body>
          <h1>Pricing</h1>
          <h2>Plans</h2>
          <p>{words}</p>
          <a href="/pricing/team">Team plan details</a>
          <a href="/features">Feature overview</a>
          <a href="https://example.com/contact">Contact sales</a>
          <img src="/chart.webp" alt="Plan comparison chart">
          {body}
        </body></html>
    """


class TestOnPageSeoWorker:
    def test_clean_page(self):
        page = snapshot(content_page(), final_url="https://example.com/pricing")

        assert OnPageSeoWorker().evaluate(page) == []

    def test_thin_page(self):
        page = snapshot("""
            <html><head></head><body>
              <h2>Sub</h2><h1>A</h1><h1>B</h1>
              <a href="/x"></a>
              <a href="/y">click here</a>
              <a href="https://elsewhere.org/">Partner site</a>
              <img src="/p.png">
            </body></html>
        """)

        findings = by_key(OnPageSeoWorker().evaluate(page))

        assert set(findings) == {
            "SEO_CON_01_TITLE_TAG_MISSING",
            "SEO_CON_04_META_DESC_MISSING",
            "SEO_CON_08_H1_DUPLICATE",
            "SEO_CON_10_HEADING_HIERARCHY",
            "SEO_CON_13_EMPTY_LINKS",
            "SEO_CON_14_GENERIC_LINK_TEXT",
            "SEO_CON_15_IMAGE_ALT_MISSING",
            "SEO_STR_01_CONTENT_LENGTH",
            "SEO_STR_03_INTERNAL_LINKS",
        }
        assert findings["SEO_STR_03_INTERNAL_LINKS"].metric_value == 2.0

    def test_title_and_description_length(self):
        page = snapshot(content_page(title="Short", description="Too short"))

        findings = by_key(OnPageSeoWorker().evaluate(page))

        assert set(findings) == {"SEO_CON_02_TITLE_TAG_LENGTH", "SEO_CON_05_META_DESC_LENGTH"}
        assert findings["SEO_CON_02_TITLE_TAG_LENGTH"].metric_value == 5.0
        assert findings["SEO_CON_05_META_DESC_LENGTH"].metric_value == 9.0

    def test_scripts_do_not_count_as_content(self):
        script = "<script>" + " ".join(["var"] * 400) + "</script>"
        page = snapshot(f"<html><head><title>x</title></head><body><h1>Hi</h1>{script}</body></html>")

        finding = by_key(OnPageSeoWorker().evaluate(page))["SEO_STR_01_CONTENT_LENGTH"]
        assert finding.metric_value == 1.0

    def test_url_checks(self):
        url = "https://example.com/Team_Plans?sid=abc123&ref=" + "x" * 80
        page = snapshot(content_page(), final_url=url)

        assert set(by_key(OnPageSeoWorker().evaluate(page))) == {
            "SEO_CON_18_URL_TOO_LONG",
            "SEO_CON_19_URL_SESSION_ID",
            "SEO_CON_20_URL_UNDERSCORES",
            "SEO_CON_21_URL_UPPERCASE",
        }


# ============================================================================
# Performance
# ============================================================================

class TestImageOptimizationWorker:
    def test_violations(self):
        page = snapshot(
            """
            <body>
              <img src="/hero.jpg">
              <picture>
                <source type="image/webp" srcset="/a.webp">
                <img src="/a.jpg" width="10" height="10">
              </picture>
            </body>
            """,
            metadata={"images": [
                {"src": "https://example.com/hero.jpg", "natural_width": 2000, "rendered_width": 400,
                 "transfer_size": 900000, "has_srcset": False},
                {"src": "https://example.com/a.webp", "natural_width": 20, "rendered_width": 10,
                 "transfer_size": 900, "has_srcset": True},
            ]},
        )

        findings = by_key(ImageOptimizationWorker().evaluate(page))

        assert set(findings) == {
            "PERF_IMG_01_FORMAT_NOT_OPTIMIZED",
            "PERF_IMG_02_OVERSIZED_IMAGES",
            "PERF_IMG_03_MISSING_DIMENSIONS",
            "PERF_IMG_04_LARGE_FILE_SIZE",
            "PERF_IMG_06_NO_SRCSET",
        }
        assert findings["PERF_IMG_01_FORMAT_NOT_OPTIMIZED"].location == "/hero.jpg"
        assert findings["PERF_IMG_04_LARGE_FILE_SIZE"].location == "https://example.com/hero.jpg"

    @pytest.mark.parametrize("count, flagged", [(6, None), (7, 4.0)])
    def test_lazy_loading_below_the_fold(self, count, flagged):
        images = "".join(f'<img src="/i{n}.webp" width="1" height="1" alt="">' for n in range(count))

        findings = by_key(ImageOptimizationWorker().evaluate(snapshot(f"<body>{images}</body>")))

        if flagged is None:
            assert findings == {}
        else:
            assert findings["PERF_RES_05_IMAGE_LAZY_LOADING"].metric_value == flagged

    def test_style_dimensions_count(self):
        page = snapshot('<img src="/a.avif" style="width: 10px; height: 10px">')

        assert ImageOptimizationWorker().evaluate(page) == []


class TestCoreWebVitalsWorker:
    def test_slow_page(self):
        page = snapshot(
            '<html><head><script src="/app.js"></script><script src="/m.js" defer></script></head></html>',
            metadata={
                "timing": {"lcp_ms": 4500, "cls": 0.15, "tbt_ms": 250, "ttfb_ms": 900, "fcp_ms": 3500},
                "headers": {"Content-Type": "text/html"},
            },
        )

        findings = by_key(CoreWebVitalsWorker().evaluate(page))

        assert set(findings) == {
            "PERF_CWV_01_LCP_POOR",
            "PERF_CWV_04_CLS_NEEDS_IMPROVEMENT",
            "PERF_CWV_06_TBT_NEEDS_IMPROVEMENT",
            "PERF_CWV_05_TTFB_SLOW",
            "PERF_CWV_06_FCP_SLOW",
            "PERF_RES_01_RENDER_BLOCKING",
            "PERF_RES_03_COMPRESSION",
            "PERF_CACHE_01_INEFFICIENT",
        }
        assert findings["PERF_CWV_01_LCP_POOR"].metric_value == 4500
        assert findings["PERF_CWV_01_LCP_POOR"].severity == FindingSeverity.critical
        assert findings["PERF_RES_01_RENDER_BLOCKING"].location == "/app.js"

    @pytest.mark.parametrize("timing, expected", [
        ({"lcp_ms": 3000}, "PERF_CWV_02_LCP_NEEDS_IMPROVEMENT"),
        ({"cls": 0.3}, "PERF_CWV_03_CLS_POOR"),
        ({"tbt_ms": 700}, "PERF_CWV_05_TBT_POOR"),
    ])
    def test_thresholds(self, timing, expected):
        findings = CoreWebVitalsWorker().evaluate(snapshot("", metadata={"timing": timing}))

        assert [f.rule_key for f in findings] == [expected]

    def test_fast_page(self):
        page = snapshot(
            '<html><head><script src="/app.js" async></script><script type="module" src="/m.js"></script></head></html>',
            metadata={
                "timing": {"lcp_ms": 1200, "cls": 0.01, "tbt_ms": 50, "ttfb_ms": 200, "fcp_ms": 900},
                "headers": {"Content-Encoding": "br", "Cache-Control": "max-age=60"},
            },
        )

        assert CoreWebVitalsWorker().evaluate(page) == []

    def test_unmeasured_metrics_are_skipped(self):
        page = snapshot("", metadata={"timing": {"lcp_ms": None, "cls": "n/a"}})

        assert CoreWebVitalsWorker().evaluate(page) == []
