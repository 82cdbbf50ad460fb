"""
Performance workers.

Both read only what the fetcher recorded: per-image measurements and
navigation/paint timings from the browser, response headers from the probe,
and the DOM. Metrics the browser could not report are skipped, not failed.
"""
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from sitecraft.features.analysis.models.analysis_job import WorkerKind
from sitecraft.features.analysis.models.finding import FindingSeverity
from sitecraft.features.analysis.schemas.analysis import FindingDraft
from sitecraft.features.analysis.services.rules.base import PageSnapshot, RuleWorker

critical = FindingSeverity.critical
serious = FindingSeverity.serious
moderate = FindingSeverity.moderate
minor = FindingSeverity.minor

LEGACY_IMAGE_FORMATS = (".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tif", ".tiff")
LARGE_IMAGE_BYTES = 500_000
EAGER_IMAGE_ALLOWANCE = 3
OVERSIZE_FACTOR = 2
SRCSET_MIN_WIDTH = 800


def _image_path(src: str) -> str:
    return urlparse(src or "").path.lower()


class ImageOptimizationWorker(RuleWorker):
    kind = WorkerKind.image_optimization
    rule_keys = frozenset({
        "PERF_IMG_01_FORMAT_NOT_OPTIMIZED",
        "PERF_IMG_02_OVERSIZED_IMAGES",
        "PERF_IMG_03_MISSING_DIMENSIONS",
        "PERF_IMG_04_LARGE_FILE_SIZE",
        "PERF_IMG_06_NO_SRCSET",
        "PERF_RES_05_IMAGE_LAZY_LOADING",
    })
    remediations = {
        "PERF_IMG_01_FORMAT_NOT_OPTIMIZED": {"summary": "Serve WebP or AVIF, with <picture> fallbacks if needed."},
        "PERF_IMG_02_OVERSIZED_IMAGES": {"summary": "Resize images to the size they are displayed at."},
        "PERF_IMG_03_MISSING_DIMENSIONS": {"summary": "Set width and height so the browser reserves space."},
        "PERF_IMG_04_LARGE_FILE_SIZE": {"summary": "Compress images above 500 KB."},
        "PERF_IMG_06_NO_SRCSET": {"summary": "Offer responsive sizes with srcset and sizes."},
        "PERF_RES_05_IMAGE_LAZY_LOADING": {"summary": "Add loading=\"lazy\" to images below the fold."},
    }

    def evaluate(self, snapshot: PageSnapshot) -> List[FindingDraft]:
        images = snapshot.dom.find_all("img")

        legacy_format = []
        for img in images:
            src = img.get("src") or ""
            if not _image_path(src).endswith(LEGACY_IMAGE_FORMATS):
                continue
            picture = img.find_parent("picture")
            modern = picture is not None and any(
                (source.get("type") or "").lower() in ("image/webp", "image/avif")
                for source in picture.find_all("source")
            )
            if not modern:
                legacy_format.append(src)

        missing_dimensions = []
        for img in images:
            style = (img.get("style") or "").replace(" ", "").lower()
            has_width = img.has_attr("width") or "width:" in style
            has_height = img.has_attr("height") or "height:" in style
            if not (has_width and has_height):
                missing_dimensions.append(img)

        not_lazy = [
            img for img in images[EAGER_IMAGE_ALLOWANCE:]
            if (img.get("loading") or "").lower() != "lazy"
        ]

        oversized, large_files, no_srcset = [], [], []
        for measured in snapshot.images:
            src = measured.get("src") or measured.get("selector") or "img"
            natural = _number(measured.get("natural_width"))
            rendered = _number(measured.get("rendered_width"))
            if natural and rendered and natural > rendered * OVERSIZE_FACTOR:
                oversized.append(src)
            size = _number(measured.get("transfer_size"))
            if size and size > LARGE_IMAGE_BYTES:
                large_files.append(src)
            if natural and natural >= SRCSET_MIN_WIDTH and not measured.get("has_srcset"):
                no_srcset.append(src)

        findings = []
        findings += self.grouped(
            "PERF_IMG_01_FORMAT_NOT_OPTIMIZED", moderate, legacy_format, "Image is not served in a modern format"
        )
        findings += self.grouped(
            "PERF_IMG_02_OVERSIZED_IMAGES", moderate, oversized, "Image is much larger than its displayed size"
        )
        findings += self.grouped(
            "PERF_IMG_03_MISSING_DIMENSIONS", serious, missing_dimensions, "Image has no explicit width and height"
        )
        findings += self.grouped("PERF_IMG_04_LARGE_FILE_SIZE", serious, large_files, "Image file exceeds 500 KB")
        findings += self.grouped("PERF_IMG_06_NO_SRCSET", minor, no_srcset, "Large image has no srcset")
        if len(not_lazy) > EAGER_IMAGE_ALLOWANCE:
            findings += self.grouped(
                "PERF_RES_05_IMAGE_LAZY_LOADING", moderate, not_lazy, "Below-the-fold image is not lazy loaded"
            )
        return findings


def _number(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


# (rule_key, severity, threshold) pairs are checked worst first; the first match wins
LCP_THRESHOLDS = (
    ("PERF_CWV_01_LCP_POOR", critical, 4000),
    ("PERF_CWV_02_LCP_NEEDS_IMPROVEMENT", serious, 2500),
)
CLS_THRESHOLDS = (
    ("PERF_CWV_03_CLS_POOR", serious, 0.25),
    ("PERF_CWV_04_CLS_NEEDS_IMPROVEMENT", moderate, 0.1),
)
TBT_THRESHOLDS = (
    ("PERF_CWV_05_TBT_POOR", critical, 600),
    ("PERF_CWV_06_TBT_NEEDS_IMPROVEMENT", serious, 200),
)
TTFB_SLOW_MS = 800
FCP_SLOW_MS = 3000


class CoreWebVitalsWorker(RuleWorker):
    kind = WorkerKind.core_web_vitals
    rule_keys = frozenset({
        "PERF_CWV_01_LCP_POOR",
        "PERF_CWV_02_LCP_NEEDS_IMPROVEMENT",
        "PERF_CWV_03_CLS_POOR",
        "PERF_CWV_04_CLS_NEEDS_IMPROVEMENT",
        "PERF_CWV_05_TBT_POOR",
        "PERF_CWV_06_TBT_NEEDS_IMPROVEMENT",
        "PERF_CWV_05_TTFB_SLOW",
        "PERF_CWV_06_FCP_SLOW",
        "PERF_RES_01_RENDER_BLOCKING",
        "PERF_RES_03_COMPRESSION",
        "PERF_CACHE_01_INEFFICIENT",
    })
    remediations = {
        "PERF_CWV_01_LCP_POOR": {"summary": "Largest Contentful Paint should be under 2.5s.", "metric": "LCP"},
        "PERF_CWV_02_LCP_NEEDS_IMPROVEMENT": {"summary": "Largest Contentful Paint should be under 2.5s.", "metric": "LCP"},
        "PERF_CWV_03_CLS_POOR": {"summary": "Reserve space for late content; keep CLS under 0.1.", "metric": "CLS"},
        "PERF_CWV_04_CLS_NEEDS_IMPROVEMENT": {"summary": "Reserve space for late content; keep CLS under 0.1.", "metric": "CLS"},
        "PERF_CWV_05_TBT_POOR": {"summary": "Split long JavaScript tasks; keep TBT under 200ms.", "metric": "TBT"},
        "PERF_CWV_06_TBT_NEEDS_IMPROVEMENT": {"summary": "Split long JavaScript tasks; keep TBT under 200ms.", "metric": "TBT"},
        "PERF_CWV_05_TTFB_SLOW": {"summary": "Reduce server response time below 800ms.", "metric": "TTFB"},
        "PERF_CWV_06_FCP_SLOW": {"summary": "Render first content within 1.8s.", "metric": "FCP"},
        "PERF_RES_01_RENDER_BLOCKING": {"summary": "Load head scripts with defer or async."},
        "PERF_RES_03_COMPRESSION": {"summary": "Serve HTML with gzip or brotli compression."},
        "PERF_CACHE_01_INEFFICIENT": {"summary": "Send a Cache-Control header for the document."},
    }

    def evaluate(self, snapshot: PageSnapshot) -> List[FindingDraft]:
        timing = snapshot.timing
        findings = []

        findings += self._threshold(timing, "lcp_ms", LCP_THRESHOLDS, "Largest Contentful Paint", "ms")
        findings += self._threshold(timing, "cls", CLS_THRESHOLDS, "Cumulative Layout Shift", "")
        findings += self._threshold(timing, "tbt_ms", TBT_THRESHOLDS, "Total Blocking Time", "ms")

        ttfb = _number(timing.get("ttfb_ms"))
        if ttfb is not None and ttfb > TTFB_SLOW_MS:
            findings.append(self.finding(
                "PERF_CWV_05_TTFB_SLOW", moderate, f"Time to first byte is {ttfb:.0f}ms",
                location="Server Response", metric_value=ttfb,
            ))
        fcp = _number(timing.get("fcp_ms"))
        if fcp is not None and fcp > FCP_SLOW_MS:
            findings.append(self.finding(
                "PERF_CWV_06_FCP_SLOW", moderate, f"First Contentful Paint is {fcp:.0f}ms",
                location="Page Rendering", metric_value=fcp,
            ))

        head = snapshot.dom.find("head")
        blocking = []
        if head is not None:
            blocking = [
                script.get("src") for script in head.find_all("script", src=True)
                if not (script.has_attr("async") or script.has_attr("defer") or script.get("type") == "module")
            ]
        findings += self.grouped(
            "PERF_RES_01_RENDER_BLOCKING", serious, blocking, "Script in <head> blocks rendering"
        )

        headers = snapshot.headers
        if headers:
            if not headers.get("content-encoding"):
                findings.append(self.finding(
                    "PERF_RES_03_COMPRESSION", moderate, "Document is served without compression",
                    location=snapshot.final_url,
                ))
            if not headers.get("cache-control"):
                findings.append(self.finding(
                    "PERF_CACHE_01_INEFFICIENT", minor, "Document has no Cache-Control header",
                    location=snapshot.final_url,
                ))
        return findings

    def _threshold(self, timing: Dict[str, Any], metric: str, thresholds, label: str, unit: str) -> List[FindingDraft]:
        value = _number(timing.get(metric))
        if value is None:
            return []
        for rule_key, severity, limit in thresholds:
            if value > limit:
                return [self.finding(
                    rule_key, severity, f"{label} is {value:g}{unit} (threshold {limit:g}{unit})",
                    location="Page Load", metric_value=value,
                )]
        return []
