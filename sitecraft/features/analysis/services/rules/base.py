"""
Rule worker contract.

A worker is a pure function of a ``PageSnapshot``: it owns a fixed set of rule
keys, evaluates them against the stored DOM and fetch metadata, and returns
``FindingDraft`` objects. It never opens a connection, never writes to the
database and never shares state with another worker; reporting is done by the
harness.

Every rule yields at most one finding per page. Repeated violations are folded
into that finding: ``metric_value`` is the number of offending elements and
``location`` lists the first few of them.
"""
import json
from abc import ABC, abstractmethod
from functools import cached_property
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence

from bs4 import BeautifulSoup, Tag

from sitecraft.features.analysis.exceptions import AssetUnavailable, RuleEvaluationError
from sitecraft.features.analysis.models.analysis import AnalysisCategory
from sitecraft.features.analysis.models.analysis_job import WORKER_CATEGORIES, WorkerKind
from sitecraft.features.analysis.models.asset import AssetKind
from sitecraft.features.analysis.models.finding import FindingSeverity
from sitecraft.features.analysis.schemas.analysis import AssetRefs, FindingDraft
from sitecraft.platform.storage.asset_store import AssetMissing, AssetStore

MAX_LOCATIONS = 5

FOCUSABLE_TAGS = ("a", "button", "input", "select", "textarea", "iframe", "summary")


class PageSnapshot:
    """Read-only view over the assets captured by one fetch."""

    def __init__(
        self,
        analysis_id: str,
        requested_url: str,
        final_url: str,
        status_code: int,
        html: str,
        metadata: Optional[Dict[str, Any]] = None,
        robots_txt: Optional[str] = None,
        sitemap_xml: Optional[str] = None,
        screenshots: Iterable[AssetKind] = (),
    ):
        self.analysis_id = analysis_id
        self.requested_url = requested_url
        self.final_url = final_url
        self.status_code = status_code
        self.html = html
        self.metadata = metadata or {}
        self.robots_txt = robots_txt
        self.sitemap_xml = sitemap_xml
        self.screenshots = frozenset(screenshots)

    @classmethod
    def load(cls, asset_store: AssetStore, asset_refs: AssetRefs) -> "PageSnapshot":
        """
        Resolve every locator in ``asset_refs`` through the asset store.

        The HTML is mandatory; metadata, robots.txt and sitemap.xml are read
        when the fetch captured them. Raises ``AssetUnavailable``.
        """
        html_locator = asset_refs.locator(AssetKind.html)
        if not html_locator:
            raise AssetUnavailable(f"No HTML snapshot recorded for analysis {asset_refs.analysis_id}")

        def read_text(kind: AssetKind) -> Optional[str]:
            locator = asset_refs.locator(kind)
            if not locator:
                return None
            try:
                return asset_store.read_text(locator)
            except AssetMissing as e:
                raise AssetUnavailable(str(e)) from e

        html = read_text(AssetKind.html)

        metadata: Dict[str, Any] = {}
        raw_metadata = read_text(AssetKind.metadata)
        if raw_metadata:
            try:
                metadata = json.loads(raw_metadata)
            except ValueError as e:
                raise AssetUnavailable(f"Unreadable fetch metadata: {e}") from e

        return cls(
            analysis_id=asset_refs.analysis_id,
            requested_url=asset_refs.requested_url,
            final_url=asset_refs.final_url,
            status_code=asset_refs.status_code,
            html=html,
            metadata=metadata,
            robots_txt=read_text(AssetKind.robots_txt),
            sitemap_xml=read_text(AssetKind.sitemap_xml),
            screenshots=[
                kind for kind in (AssetKind.screenshot_desktop, AssetKind.screenshot_mobile)
                if asset_refs.locator(kind)
            ],
        )

    @cached_property
    def dom(self) -> BeautifulSoup:
        return BeautifulSoup(self.html or "", "html.parser")

    @property
    def headers(self) -> Dict[str, str]:
        return {str(k).lower(): str(v) for k, v in (self.metadata.get("headers") or {}).items()}

    @property
    def timing(self) -> Dict[str, Any]:
        return self.metadata.get("timing") or {}

    @property
    def text_styles(self) -> List[Dict[str, Any]]:
        return self.metadata.get("text_styles") or []

    @property
    def images(self) -> List[Dict[str, Any]]:
        return self.metadata.get("images") or []

    @cached_property
    def element_ids(self) -> FrozenSet[str]:
        return frozenset(tag["id"] for tag in self.dom.find_all(id=True))


def describe(tag: Tag) -> str:
    """Short CSS-ish locator for an element: ``tag#id`` or ``tag.class`` under its parents."""
    parts = []
    node = tag
    while isinstance(node, Tag) and node.name not in ("[document]", "html") and len(parts) < 4:
        part = node.name
        if node.get("id"):
            parts.append(f"{part}#{node['id']}")
            break
        classes = node.get("class") or []
        if classes:
            part += "." + ".".join(classes[:2])
        parts.append(part)
        node = node.parent
    return " > ".join(reversed(parts))


def is_focusable(tag: Tag) -> bool:
    tabindex = tag.get("tabindex")
    if tabindex is not None:
        try:
            return int(tabindex) >= 0
        except ValueError:
            return False
    if tag.name == "a":
        return tag.has_attr("href")
    if tag.name in ("input", "button", "select", "textarea"):
        return not tag.has_attr("disabled") and tag.get("type") != "hidden"
    return tag.name in FOCUSABLE_TAGS


def accessible_text(tag: Tag) -> str:
    """Text an assistive technology would announce for ``tag`` (simplified)."""
    for attr in ("aria-label", "title"):
        value = (tag.get(attr) or "").strip()
        if value:
            return value
    text = tag.get_text(" ", strip=True)
    if text:
        return text
    for img in tag.find_all("img"):
        alt = (img.get("alt") or "").strip()
        if alt:
            return alt
    return ""


class RuleWorker(ABC):
    """
    Base class for rule-category workers.

    Subclasses set ``kind`` and ``rule_keys`` and implement ``evaluate``.
    ``remediations`` maps a rule key to the remediation payload attached to
    its findings.
    """
    kind: WorkerKind
    rule_keys: FrozenSet[str] = frozenset()
    remediations: Mapping[str, Dict[str, Any]] = {}

    @property
    def category(self) -> AnalysisCategory:
        return WORKER_CATEGORIES[self.kind]

    @abstractmethod
    def evaluate(self, snapshot: PageSnapshot) -> List[FindingDraft]:
        """Return every finding for ``snapshot``; an empty list means the page passed."""

    def run(self, snapshot: PageSnapshot) -> List[FindingDraft]:
        findings = self.evaluate(snapshot)
        unknown = sorted({f.rule_key for f in findings} - self.rule_keys)
        if unknown:
            raise RuleEvaluationError(f"{self.kind.value} emitted unknown rule keys: {', '.join(unknown)}")
        return findings

    def finding(
        self,
        rule_key: str,
        severity: FindingSeverity,
        message: str,
        location: Optional[str] = None,
        metric_value: Optional[float] = None,
    ) -> FindingDraft:
        return FindingDraft(
            rule_key=rule_key,
            severity=severity,
            location=location,
            metric_value=metric_value,
            message=message,
            remediation=self.remediations.get(rule_key),
        )

    def grouped(
        self,
        rule_key: str,
        severity: FindingSeverity,
        elements: Sequence[Any],
        message: str,
    ) -> List[FindingDraft]:
        """One finding for all ``elements`` violating ``rule_key``; nothing when there are none."""
        if not elements:
            return []
        locations = [e if isinstance(e, str) else describe(e) for e in elements[:MAX_LOCATIONS]]
        if len(elements) > MAX_LOCATIONS:
            locations.append(f"(+{len(elements) - MAX_LOCATIONS} more)")
        return [
            self.finding(
                rule_key,
                severity,
                f"{message} ({len(elements)} found)" if len(elements) > 1 else message,
                location=", ".join(locations),
                metric_value=float(len(elements)),
            )
        ]
