"""
SEO workers: crawlability/indexability and on-page content.
"""
import json
import re
import xml.etree.ElementTree as ET
from typing import List, Optional
from urllib.parse import urljoin, urlparse

from bs4 import Comment

from sitecraft.features.analysis.models.analysis_job import WorkerKind
from sitecraft.features.analysis.models.finding import FindingSeverity
from sitecraft.features.analysis.schemas.analysis import FindingDraft
from sitecraft.features.analysis.services.rules.base import PageSnapshot, RuleWorker, describe

critical = FindingSeverity.critical
serious = FindingSeverity.serious
moderate = FindingSeverity.moderate
minor = FindingSeverity.minor

ROBOTS_DIRECTIVES = frozenset({
    "user-agent", "disallow", "allow", "sitemap", "crawl-delay", "host", "clean-param", "noindex",
})
_HREFLANG = re.compile(r"^([a-z]{2,3}(-[a-z0-9]{2,4})?|x-default)$", re.IGNORECASE)


def _robots_groups(robots_txt: str):
    """Yield ``(user_agents, [(directive, value), ...])`` groups from robots.txt text."""
    agents, rules = [], []
    for raw in robots_txt.splitlines():
        line = raw.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue
        directive, _, value = line.partition(":")
        directive = directive.strip().lower()
        value = value.strip()
        if directive == "user-agent":
            if rules:
                yield agents, rules
                agents, rules = [], []
            agents.append(value.lower())
        else:
            rules.append((directive, value))
    if agents or rules:
        yield agents, rules


class TechnicalSeoWorker(RuleWorker):
    kind = WorkerKind.technical_seo
    rule_keys = frozenset({
        "SEO_TEC_01_ROBOTS_TXT_MISSING",
        "SEO_TEC_02_ROBOTS_TXT_ERRORS",
        "SEO_TEC_03_SITEMAP_MISSING",
        "SEO_TEC_04_SITEMAP_ERRORS",
        "SEO_TEC_05_CANONICAL_MISSING",
        "SEO_TEC_06_CANONICAL_SELF_REFERENCE",
        "SEO_TEC_07_HTTPS_MISSING",
        "SEO_TEC_08_MOBILE_FRIENDLY",
        "SEO_TEC_09_STRUCTURED_DATA_VALIDATION",
        "SEO_TEC_10_HREFLANG_ERRORS",
        "SEO_ROBOTS_BLOCKING",
    })
    remediations = {
        "SEO_TEC_01_ROBOTS_TXT_MISSING": {"summary": "Serve a robots.txt at the site root."},
        "SEO_TEC_02_ROBOTS_TXT_ERRORS": {"summary": "Fix invalid directives and avoid disallowing the whole site."},
        "SEO_TEC_03_SITEMAP_MISSING": {"summary": "Publish sitemap.xml and reference it from robots.txt."},
        "SEO_TEC_04_SITEMAP_ERRORS": {"summary": "Serve a well-formed sitemap listing at least one URL."},
        "SEO_TEC_05_CANONICAL_MISSING": {"summary": "Add <link rel=\"canonical\"> pointing at the preferred URL."},
        "SEO_TEC_06_CANONICAL_SELF_REFERENCE": {"summary": "Use a single canonical on the same host."},
        "SEO_TEC_07_HTTPS_MISSING": {"summary": "Serve the site over HTTPS and redirect HTTP to it."},
        "SEO_TEC_08_MOBILE_FRIENDLY": {"summary": "Add <meta name=\"viewport\" content=\"width=device-width\">."},
        "SEO_TEC_09_STRUCTURED_DATA_VALIDATION": {"summary": "Fix JSON-LD blocks that fail to parse."},
        "SEO_TEC_10_HREFLANG_ERRORS": {"summary": "Use valid language codes and absolute hrefs in hreflang links."},
        "SEO_ROBOTS_BLOCKING": {"summary": "Remove noindex from pages that should appear in search results."},
    }

    def evaluate(self, snapshot: PageSnapshot) -> List[FindingDraft]:
        dom = snapshot.dom
        findings = []

        findings += self._check_robots(snapshot)
        findings += self._check_sitemap(snapshot)

        if urlparse(snapshot.final_url).scheme != "https":
            findings.append(self.finding(
                "SEO_TEC_07_HTTPS_MISSING", critical, "Page is not served over HTTPS", location=snapshot.final_url,
            ))

        canonicals = [link for link in dom.find_all("link", href=True) if "canonical" in link.get_attribute_list("rel")]
        if not canonicals:
            findings.append(self.finding("SEO_TEC_05_CANONICAL_MISSING", critical, "Page has no canonical link"))
        elif len(canonicals) > 1:
            findings += self.grouped(
                "SEO_TEC_06_CANONICAL_SELF_REFERENCE", moderate, canonicals, "Page declares more than one canonical URL"
            )
        else:
            canonical = urljoin(snapshot.final_url, canonicals[0]["href"])
            if urlparse(canonical).hostname != urlparse(snapshot.final_url).hostname:
                findings.append(self.finding(
                    "SEO_TEC_06_CANONICAL_SELF_REFERENCE", moderate,
                    f"Canonical points to another host: {canonical}", location=describe(canonicals[0]),
                ))

        viewport = dom.find("meta", attrs={"name": "viewport"})
        if viewport is None:
            findings.append(self.finding("SEO_TEC_08_MOBILE_FRIENDLY", critical, "Page has no viewport meta tag"))
        elif "width=device-width" not in (viewport.get("content") or "").replace(" ", "").lower():
            findings.append(self.finding(
                "SEO_TEC_08_MOBILE_FRIENDLY", serious, "Viewport is not set to the device width",
                location=describe(viewport),
            ))

        broken_ld = []
        for script in dom.find_all("script", attrs={"type": "application/ld+json"}):
            try:
                json.loads(script.string or script.get_text() or "")
            except ValueError:
                broken_ld.append(script)
        findings += self.grouped(
            "SEO_TEC_09_STRUCTURED_DATA_VALIDATION", moderate, broken_ld, "JSON-LD block is not valid JSON"
        )

        bad_hreflang = [
            link for link in dom.find_all("link", attrs={"hreflang": True})
            if not _HREFLANG.match(link["hreflang"].strip()) or not link.get("href")
        ]
        findings += self.grouped("SEO_TEC_10_HREFLANG_ERRORS", moderate, bad_hreflang, "Invalid hreflang annotation")

        meta_robots = " ".join(
            (m.get("content") or "") for m in dom.find_all("meta", attrs={"name": re.compile("^(robots|googlebot)$", re.I)})
        ).lower()
        header_robots = snapshot.headers.get("x-robots-tag", "").lower()
        if "noindex" in meta_robots or "noindex" in header_robots:
            findings.append(self.finding(
                "SEO_ROBOTS_BLOCKING", critical, "Page asks search engines not to index it",
                location="x-robots-tag" if "noindex" in header_robots else "meta[name=robots]",
            ))
        return findings

    def _check_robots(self, snapshot: PageSnapshot) -> List[FindingDraft]:
        if snapshot.robots_txt is None:
            return [self.finding("SEO_TEC_01_ROBOTS_TXT_MISSING", serious, "robots.txt was not found", location="/robots.txt")]

        blocks_all = False
        unknown = set()
        for agents, rules in _robots_groups(snapshot.robots_txt):
            if "*" in agents and ("disallow", "/") in rules:
                blocks_all = True
            unknown.update(directive for directive, _ in rules if directive not in ROBOTS_DIRECTIVES)

        if blocks_all:
            return [self.finding(
                "SEO_TEC_02_ROBOTS_TXT_ERRORS", critical, "robots.txt disallows the whole site for all crawlers",
                location="/robots.txt",
            )]
        if unknown:
            return [self.finding(
                "SEO_TEC_02_ROBOTS_TXT_ERRORS", serious,
                f"robots.txt has unknown directives: {', '.join(sorted(unknown))}",
                location="/robots.txt", metric_value=float(len(unknown)),
            )]
        return []

    def _check_sitemap(self, snapshot: PageSnapshot) -> List[FindingDraft]:
        declared = snapshot.robots_txt is not None and re.search(r"^\s*sitemap\s*:", snapshot.robots_txt, re.I | re.M)
        if snapshot.sitemap_xml is None:
            if declared:
                return []
            return [self.finding("SEO_TEC_03_SITEMAP_MISSING", serious, "No sitemap.xml found", location="/sitemap.xml")]

        error = _sitemap_error(snapshot.sitemap_xml)
        if error:
            return [self.finding("SEO_TEC_04_SITEMAP_ERRORS", moderate, error, location="/sitemap.xml")]
        return []


def _sitemap_error(sitemap_xml: str) -> Optional[str]:
    try:
        root = ET.fromstring(sitemap_xml.strip().encode("utf-8"))
    except ET.ParseError as e:
        return f"sitemap.xml is not well-formed XML: {e}"
    tag = root.tag.rsplit("}", 1)[-1]
    if tag not in ("urlset", "sitemapindex"):
        return f"sitemap.xml root element is <{tag}>, expected <urlset> or <sitemapindex>"
    if not any(child.tag.rsplit("}", 1)[-1] in ("url", "sitemap") for child in root):
        return "sitemap.xml lists no URLs"
    return None


GENERIC_LINK_TEXT = frozenset({"click here", "here", "read more", "more", "learn more", "link", "this", "go"})
_SESSION_PARAM = re.compile(r"(^|&)(sid|sessionid|session_id|phpsessid|jsessionid)=", re.IGNORECASE)
MIN_WORD_COUNT = 300
MIN_INTERNAL_LINKS = 3
NON_CONTENT_TAGS = ("script", "style", "noscript", "template")


class OnPageSeoWorker(RuleWorker):
    kind = WorkerKind.on_page_seo
    rule_keys = frozenset({
        "SEO_CON_01_TITLE_TAG_MISSING",
        "SEO_CON_02_TITLE_TAG_LENGTH",
        "SEO_CON_04_META_DESC_MISSING",
        "SEO_CON_05_META_DESC_LENGTH",
        "SEO_CON_07_H1_MISSING",
        "SEO_CON_08_H1_DUPLICATE",
        "SEO_CON_10_HEADING_HIERARCHY",
        "SEO_CON_13_EMPTY_LINKS",
        "SEO_CON_14_GENERIC_LINK_TEXT",
        "SEO_CON_15_IMAGE_ALT_MISSING",
        "SEO_CON_18_URL_TOO_LONG",
        "SEO_CON_19_URL_SESSION_ID",
        "SEO_CON_20_URL_UNDERSCORES",
        "SEO_CON_21_URL_UPPERCASE",
        "SEO_STR_01_CONTENT_LENGTH",
        "SEO_STR_03_INTERNAL_LINKS",
    })
    remediations = {
        "SEO_CON_01_TITLE_TAG_MISSING": {"summary": "Add a unique, descriptive <title>."},
        "SEO_CON_02_TITLE_TAG_LENGTH": {"summary": "Keep titles between 30 and 60 characters."},
        "SEO_CON_04_META_DESC_MISSING": {"summary": "Add a meta description summarizing the page."},
        "SEO_CON_05_META_DESC_LENGTH": {"summary": "Keep meta descriptions between 120 and 160 characters."},
        "SEO_CON_07_H1_MISSING": {"summary": "Add one h1 stating the page topic."},
        "SEO_CON_08_H1_DUPLICATE": {"summary": "Use a single h1 per page."},
        "SEO_CON_10_HEADING_HIERARCHY": {"summary": "Open the content with the h1 before lower-level headings."},
        "SEO_CON_13_EMPTY_LINKS": {"summary": "Give every link visible text or an aria-label."},
        "SEO_CON_14_GENERIC_LINK_TEXT": {"summary": "Use link text that describes the destination."},
        "SEO_CON_15_IMAGE_ALT_MISSING": {"summary": "Describe images with alt text."},
        "SEO_CON_18_URL_TOO_LONG": {"summary": "Keep URLs under 100 characters."},
        "SEO_CON_19_URL_SESSION_ID": {"summary": "Keep session identifiers out of URLs."},
        "SEO_CON_20_URL_UNDERSCORES": {"summary": "Separate words in URLs with hyphens."},
        "SEO_CON_21_URL_UPPERCASE": {"summary": "Use lowercase URL paths."},
        "SEO_STR_01_CONTENT_LENGTH": {"summary": f"Pages with under {MIN_WORD_COUNT} words rank poorly."},
        "SEO_STR_03_INTERNAL_LINKS": {"summary": "Link to related pages on the same site."},
    }

    def evaluate(self, snapshot: PageSnapshot) -> List[FindingDraft]:
        dom = snapshot.dom
        findings = []

        title = dom.find("title")
        title_text = title.get_text(strip=True) if title else ""
        if not title_text:
            findings.append(self.finding("SEO_CON_01_TITLE_TAG_MISSING", critical, "Page has no title tag"))
        elif not 30 <= len(title_text) <= 60:
            findings.append(self.finding(
                "SEO_CON_02_TITLE_TAG_LENGTH", serious,
                f"Title is {len(title_text)} characters (recommended 30-60)",
                location="title", metric_value=float(len(title_text)),
            ))

        description = dom.find("meta", attrs={"name": re.compile("^description$", re.I)})
        description_text = (description.get("content") or "").strip() if description else ""
        if not description_text:
            findings.append(self.finding("SEO_CON_04_META_DESC_MISSING", serious, "Page has no meta description"))
        elif not 120 <= len(description_text) <= 160:
            findings.append(self.finding(
                "SEO_CON_05_META_DESC_LENGTH", moderate,
                f"Meta description is {len(description_text)} characters (recommended 120-160)",
                location="meta[name=description]", metric_value=float(len(description_text)),
            ))

        headings = dom.find_all(re.compile(r"^h[1-6]$"))
        h1s = [h for h in headings if h.name == "h1"]
        if not h1s:
            findings.append(self.finding("SEO_CON_07_H1_MISSING", serious, "Page has no h1"))
        elif len(h1s) > 1:
            findings += self.grouped("SEO_CON_08_H1_DUPLICATE", moderate, h1s, "Page has multiple h1 headings")
        if h1s and headings[0].name != "h1":
            findings.append(self.finding(
                "SEO_CON_10_HEADING_HIERARCHY", moderate, "Lower-level headings appear before the h1",
                location=describe(headings[0]),
            ))

        empty_links, generic_links, internal = [], [], 0
        page_host = urlparse(snapshot.final_url).hostname
        for link in dom.find_all("a", href=True):
            text = link.get_text(" ", strip=True)
            label = text or (link.get("aria-label") or "").strip() or any(
                (img.get("alt") or "").strip() for img in link.find_all("img")
            )
            if not label:
                empty_links.append(link)
            elif text.lower() in GENERIC_LINK_TEXT:
                generic_links.append(link)
            href = link["href"].strip()
            if href.startswith(("mailto:", "tel:", "javascript:", "#")):
                continue
            if urlparse(urljoin(snapshot.final_url, href)).hostname == page_host:
                internal += 1
        findings += self.grouped("SEO_CON_13_EMPTY_LINKS", minor, empty_links, "Link has no text")
        findings += self.grouped("SEO_CON_14_GENERIC_LINK_TEXT", minor, generic_links, "Link text is not descriptive")
        if internal < MIN_INTERNAL_LINKS:
            findings.append(self.finding(
                "SEO_STR_03_INTERNAL_LINKS", moderate, f"Only {internal} internal links found",
                metric_value=float(internal),
            ))

        missing_alt = [img for img in dom.find_all("img") if not img.has_attr("alt")]
        findings += self.grouped("SEO_CON_15_IMAGE_ALT_MISSING", serious, missing_alt, "Image has no alt attribute")

        body = dom.find("body") or dom
        words = sum(
            len(text.split())
            for text in body.find_all(string=True)
            if not isinstance(text, Comment) and text.parent.name not in NON_CONTENT_TAGS
        )
        if words < MIN_WORD_COUNT:
            findings.append(self.finding(
                "SEO_STR_01_CONTENT_LENGTH", moderate, f"Page has {words} words of content",
                metric_value=float(words),
            ))

        findings += self._check_url(snapshot.final_url)
        return findings

    def _check_url(self, url: str) -> List[FindingDraft]:
        parsed = urlparse(url)
        findings = []
        if len(url) > 100:
            findings.append(self.finding(
                "SEO_CON_18_URL_TOO_LONG", minor, f"URL is {len(url)} characters", location=url,
                metric_value=float(len(url)),
            ))
        if _SESSION_PARAM.search(parsed.query):
            findings.append(self.finding("SEO_CON_19_URL_SESSION_ID", serious, "URL carries a session id", location=url))
        if "_" in parsed.path:
            findings.append(self.finding("SEO_CON_20_URL_UNDERSCORES", minor, "URL path uses underscores", location=url))
        if parsed.path != parsed.path.lower():
            findings.append(self.finding("SEO_CON_21_URL_UPPERCASE", minor, "URL path has uppercase letters", location=url))
        return findings
