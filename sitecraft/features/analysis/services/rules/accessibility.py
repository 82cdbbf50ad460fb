"""
Accessibility workers (WCAG 2.1 A/AA).

One class per rule family. Each inspects the stored DOM; the color contrast
worker also reads the computed text colors captured by the fetcher.
"""
import re
from collections import Counter, defaultdict
from typing import List, Optional, Tuple

from bs4 import Tag

from sitecraft.features.analysis.models.analysis_job import WorkerKind
from sitecraft.features.analysis.models.finding import FindingSeverity
from sitecraft.features.analysis.schemas.analysis import FindingDraft
from sitecraft.features.analysis.services.rules.base import (
    PageSnapshot,
    RuleWorker,
    accessible_text,
    describe,
    is_focusable,
)

critical = FindingSeverity.critical
serious = FindingSeverity.serious
moderate = FindingSeverity.moderate
minor = FindingSeverity.minor


def _wcag(criterion: str, summary: str) -> dict:
    return {"wcag": criterion, "summary": summary}


# ============================================================================
# ARIA
# ============================================================================

VALID_ROLES = frozenset("""
    alert alertdialog application article banner blockquote button caption cell checkbox code
    columnheader combobox complementary contentinfo definition deletion dialog directory document
    emphasis feed figure form generic grid gridcell group heading img insertion link list listbox
    listitem log main marquee math menu menubar menuitem menuitemcheckbox menuitemradio meter
    navigation none note option paragraph presentation progressbar radio radiogroup region row
    rowgroup rowheader scrollbar search searchbox separator slider spinbutton status strong
    subscript superscript switch tab table tablist tabpanel term textbox time timer toolbar
    tooltip tree treegrid treeitem
""".split())

REQUIRED_ARIA_ATTRS = {
    "checkbox": ("aria-checked",),
    "combobox": ("aria-expanded",),
    "heading": ("aria-level",),
    "menuitemcheckbox": ("aria-checked",),
    "menuitemradio": ("aria-checked",),
    "option": ("aria-selected",),
    "radio": ("aria-checked",),
    "scrollbar": ("aria-controls", "aria-valuenow"),
    "slider": ("aria-valuenow",),
    "spinbutton": ("aria-valuenow",),
    "switch": ("aria-checked",),
}

IMPLICIT_ROLES = {
    "button": "button",
    "nav": "navigation",
    "main": "main",
    "header": "banner",
    "footer": "contentinfo",
    "aside": "complementary",
    "ul": "list",
    "ol": "list",
    "li": "listitem",
    "table": "table",
    "form": "form",
    "article": "article",
    "dialog": "dialog",
}

BOOLEAN_ARIA_ATTRS = ("aria-hidden", "aria-disabled", "aria-expanded", "aria-required", "aria-readonly")
TRISTATE_ARIA_ATTRS = ("aria-checked", "aria-pressed")


class AriaWorker(RuleWorker):
    kind = WorkerKind.aria
    rule_keys = frozenset({
        "ACC_ARIA_01_ROLE_INVALID",
        "ACC_ARIA_02_REQUIRED_ATTR_MISSING",
        "ACC_ARIA_03_INVALID_ATTR_VALUE",
        "ACC_ARIA_04_REDUNDANT_ROLE",
        "ACC_ARIA_05_HIDDEN_FOCUSABLE",
        "ACC_ARIA_07_LABELLEDBY_MISSING",
        "ACC_ARIA_08_DESCRIBEDBY_MISSING",
        "ACC_ARIA_09_EXPANDED_MISSING",
        "ACC_ARIA_10_CONTROLS_MISSING",
    })
    remediations = {
        "ACC_ARIA_01_ROLE_INVALID": _wcag("4.1.2", "Use a role defined by WAI-ARIA or remove the role attribute."),
        "ACC_ARIA_02_REQUIRED_ATTR_MISSING": _wcag("4.1.2", "Add the state attributes the role requires."),
        "ACC_ARIA_03_INVALID_ATTR_VALUE": _wcag("4.1.2", "Use only the values the ARIA attribute allows."),
        "ACC_ARIA_04_REDUNDANT_ROLE": _wcag("4.1.2", "Remove roles that repeat the element's implicit role."),
        "ACC_ARIA_05_HIDDEN_FOCUSABLE": _wcag("4.1.2", "Do not hide focusable content with aria-hidden."),
        "ACC_ARIA_07_LABELLEDBY_MISSING": _wcag("1.3.1", "Point aria-labelledby at an existing element id."),
        "ACC_ARIA_08_DESCRIBEDBY_MISSING": _wcag("1.3.1", "Point aria-describedby at an existing element id."),
        "ACC_ARIA_09_EXPANDED_MISSING": _wcag("4.1.2", "Expose the popup state with aria-expanded."),
        "ACC_ARIA_10_CONTROLS_MISSING": _wcag("4.1.2", "Point aria-controls at an existing element id."),
    }

    def evaluate(self, snapshot: PageSnapshot) -> List[FindingDraft]:
        dom = snapshot.dom
        ids = snapshot.element_ids

        invalid_role, missing_attr, redundant = [], [], []
        for tag in dom.find_all(attrs={"role": True}):
            roles = tag["role"].split()
            valid = [r for r in roles if r in VALID_ROLES]
            if not valid:
                invalid_role.append(tag)
                continue
            role = valid[0]
            if any(not tag.has_attr(attr) for attr in REQUIRED_ARIA_ATTRS.get(role, ())):
                # Native checkboxes and radios carry their own checked state
                if not (tag.name == "input" and tag.get("type") in ("checkbox", "radio")):
                    missing_attr.append(tag)
            if IMPLICIT_ROLES.get(tag.name) == role:
                redundant.append(tag)

        invalid_value = []
        for tag in dom.find_all(True):
            for attr in BOOLEAN_ARIA_ATTRS:
                if tag.has_attr(attr) and tag[attr].strip().lower() not in ("true", "false"):
                    invalid_value.append(tag)
            for attr in TRISTATE_ARIA_ATTRS:
                if tag.has_attr(attr) and tag[attr].strip().lower() not in ("true", "false", "mixed"):
                    invalid_value.append(tag)

        hidden_focusable = []
        for tag in dom.find_all(attrs={"aria-hidden": "true"}):
            if is_focusable(tag) or any(is_focusable(child) for child in tag.find_all(True)):
                hidden_focusable.append(tag)

        def dangling(attr: str) -> List[Tag]:
            return [
                tag for tag in dom.find_all(attrs={attr: True})
                if any(ref not in ids for ref in tag[attr].split())
            ]

        expanded_missing = [
            tag for tag in dom.find_all(attrs={"aria-haspopup": True})
            if tag["aria-haspopup"].lower() != "false" and not tag.has_attr("aria-expanded")
        ]

        findings = []
        findings += self.grouped("ACC_ARIA_01_ROLE_INVALID", serious, invalid_role, "Element has an invalid ARIA role")
        findings += self.grouped(
            "ACC_ARIA_02_REQUIRED_ATTR_MISSING", serious, missing_attr, "ARIA role is missing a required attribute"
        )
        findings += self.grouped(
            "ACC_ARIA_03_INVALID_ATTR_VALUE", serious, invalid_value, "ARIA attribute has an invalid value"
        )
        findings += self.grouped("ACC_ARIA_04_REDUNDANT_ROLE", minor, redundant, "Role duplicates the implicit role")
        findings += self.grouped(
            "ACC_ARIA_05_HIDDEN_FOCUSABLE", serious, hidden_focusable, "aria-hidden content contains focusable elements"
        )
        findings += self.grouped(
            "ACC_ARIA_07_LABELLEDBY_MISSING", serious, dangling("aria-labelledby"),
            "aria-labelledby references a missing id",
        )
        findings += self.grouped(
            "ACC_ARIA_08_DESCRIBEDBY_MISSING", moderate, dangling("aria-describedby"),
            "aria-describedby references a missing id",
        )
        findings += self.grouped(
            "ACC_ARIA_09_EXPANDED_MISSING", moderate, expanded_missing, "Popup trigger does not expose aria-expanded"
        )
        findings += self.grouped(
            "ACC_ARIA_10_CONTROLS_MISSING", moderate, dangling("aria-controls"),
            "aria-controls references a missing id",
        )
        return findings


# ============================================================================
# Color contrast
# ============================================================================

_RGB_PATTERN = re.compile(r"rgba?\(\s*([\d.]+)[,\s]+([\d.]+)[,\s]+([\d.]+)(?:[,\s/]+([\d.]+%?))?\s*\)")


def parse_color(value: Optional[str]) -> Optional[Tuple[float, float, float, float]]:
    """Parse a computed CSS color (``rgb()``/``rgba()`` or ``#rrggbb``)."""
    if not value:
        return None
    value = value.strip().lower()
    match = _RGB_PATTERN.match(value)
    if match:
        r, g, b = (float(match.group(i)) for i in range(1, 4))
        alpha = match.group(4)
        if alpha is None:
            a = 1.0
        elif alpha.endswith("%"):
            a = float(alpha[:-1]) / 100
        else:
            a = float(alpha)
        return r, g, b, a
    if value.startswith("#") and len(value) in (4, 7):
        digits = value[1:]
        if len(digits) == 3:
            digits = "".join(ch * 2 for ch in digits)
        try:
            return int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16), 1.0
        except ValueError:
            return None
    return None


def _blend(fg, bg) -> Tuple[float, float, float]:
    alpha = fg[3]
    return tuple(fg[i] * alpha + bg[i] * (1 - alpha) for i in range(3))


def _luminance(rgb) -> float:
    channels = []
    for c in rgb:
        c = c / 255
        channels.append(c / 12.92 if c <= 0.03928 else ((c + 0.055) / 1.055) ** 2.4)
    return 0.2126 * channels[0] + 0.7152 * channels[1] + 0.0722 * channels[2]


def contrast_ratio(foreground: str, background: Optional[str]) -> Optional[float]:
    fg = parse_color(foreground)
    if fg is None:
        return None
    bg = parse_color(background) or (255, 255, 255, 1.0)
    bg_rgb = _blend(bg, (255, 255, 255))
    fg_rgb = _blend(fg, bg_rgb)
    lighter, darker = sorted((_luminance(fg_rgb), _luminance(bg_rgb)), reverse=True)
    return round((lighter + 0.05) / (darker + 0.05), 2)


def is_large_text(font_size_px: float, font_weight) -> bool:
    try:
        weight = int(font_weight)
    except (TypeError, ValueError):
        weight = 700 if str(font_weight).lower() == "bold" else 400
    return font_size_px >= 24 or (font_size_px >= 18.66 and weight >= 700)


class ColorContrastWorker(RuleWorker):
    kind = WorkerKind.color_contrast
    rule_keys = frozenset({
        "ACC_CLR_01_TEXT_CONTRAST_RATIO",
        "ACC_CLR_02_LARGE_TEXT_CONTRAST",
        "ACC_CLR_07_REFLOW_CONTENT",
    })
    remediations = {
        "ACC_CLR_01_TEXT_CONTRAST_RATIO": _wcag("1.4.3", "Body text needs a contrast ratio of at least 4.5:1."),
        "ACC_CLR_02_LARGE_TEXT_CONTRAST": _wcag("1.4.3", "Large text needs a contrast ratio of at least 3:1."),
        "ACC_CLR_07_REFLOW_CONTENT": _wcag("1.4.4", "Allow users to zoom: drop user-scalable=no and low maximum-scale."),
    }

    def evaluate(self, snapshot: PageSnapshot) -> List[FindingDraft]:
        normal_failures, large_failures = [], []
        worst_normal, worst_large = None, None

        for style in snapshot.text_styles:
            ratio = contrast_ratio(style.get("color"), style.get("background_color"))
            if ratio is None:
                continue
            location = style.get("selector") or "text"
            if is_large_text(float(style.get("font_size_px") or 16), style.get("font_weight")):
                if ratio < 3.0:
                    large_failures.append(location)
                    worst_large = ratio if worst_large is None else min(worst_large, ratio)
            elif ratio < 4.5:
                normal_failures.append(location)
                worst_normal = ratio if worst_normal is None else min(worst_normal, ratio)

        findings = []
        findings += self.grouped(
            "ACC_CLR_01_TEXT_CONTRAST_RATIO", serious, normal_failures,
            f"Text contrast below 4.5:1 (lowest {worst_normal}:1)",
        )
        findings += self.grouped(
            "ACC_CLR_02_LARGE_TEXT_CONTRAST", moderate, large_failures,
            f"Large text contrast below 3:1 (lowest {worst_large}:1)",
        )

        viewport = snapshot.dom.find("meta", attrs={"name": "viewport"})
        if viewport is not None and _blocks_zoom(viewport.get("content") or ""):
            findings.append(self.finding(
                "ACC_CLR_07_REFLOW_CONTENT", serious,
                "Viewport meta tag prevents zooming", location=describe(viewport),
            ))
        return findings


def _blocks_zoom(content: str) -> bool:
    settings = {}
    for part in content.replace(";", ",").split(","):
        if "=" in part:
            key, _, value = part.partition("=")
            settings[key.strip().lower()] = value.strip().lower()
    if settings.get("user-scalable") in ("no", "0"):
        return True
    try:
        return float(settings.get("maximum-scale", "10")) < 2
    except ValueError:
        return False


# ============================================================================
# Keyboard
# ============================================================================

_FOCUS_OUTLINE_REMOVED = re.compile(r":focus[^{]*\{[^}]*outline\s*:\s*(none|0)\b", re.IGNORECASE)
NON_INTERACTIVE_TAGS = ("div", "span", "li", "td", "img", "p", "section", "article")


class KeyboardWorker(RuleWorker):
    kind = WorkerKind.keyboard
    rule_keys = frozenset({
        "ACC_KBD_01_FOCUS_VISIBLE",
        "ACC_KBD_03_TABINDEX_POSITIVE",
        "ACC_KBD_04_INTERACTIVE_NOT_FOCUSABLE",
        "ACC_KBD_06_BYPASS_BLOCKS",
        "ACC_KBD_08_ACCESS_KEY_DUPLICATE",
    })
    remediations = {
        "ACC_KBD_01_FOCUS_VISIBLE": _wcag("2.4.7", "Keep a visible focus indicator on every focusable element."),
        "ACC_KBD_03_TABINDEX_POSITIVE": _wcag("2.4.3", "Use tabindex 0 or -1; follow DOM order for focus."),
        "ACC_KBD_04_INTERACTIVE_NOT_FOCUSABLE": _wcag("2.1.1", "Use native controls or add tabindex and a role."),
        "ACC_KBD_06_BYPASS_BLOCKS": _wcag("2.4.1", "Add a skip link or a main landmark."),
        "ACC_KBD_08_ACCESS_KEY_DUPLICATE": _wcag("4.1.1", "Give every accesskey a unique value."),
    }

    def evaluate(self, snapshot: PageSnapshot) -> List[FindingDraft]:
        dom = snapshot.dom
        findings = []

        styles = " ".join(s.get_text() for s in dom.find_all("style"))
        if _FOCUS_OUTLINE_REMOVED.search(styles):
            findings.append(self.finding(
                "ACC_KBD_01_FOCUS_VISIBLE", serious, "Stylesheet removes the focus outline", location="style",
            ))

        positive = []
        for tag in dom.find_all(attrs={"tabindex": True}):
            try:
                if int(tag["tabindex"]) > 0:
                    positive.append(tag)
            except ValueError:
                continue
        findings += self.grouped("ACC_KBD_03_TABINDEX_POSITIVE", serious, positive, "Positive tabindex changes focus order")

        unreachable = [
            tag for tag in dom.find_all(attrs={"onclick": True})
            if (tag.name in NON_INTERACTIVE_TAGS or (tag.name == "a" and not tag.has_attr("href")))
            and not tag.has_attr("tabindex")
        ]
        findings += self.grouped(
            "ACC_KBD_04_INTERACTIVE_NOT_FOCUSABLE", serious, unreachable,
            "Clickable element cannot be reached with the keyboard",
        )

        has_main = dom.find("main") is not None or dom.find(attrs={"role": "main"}) is not None
        first_links = dom.find_all("a", href=True, limit=3)
        has_skip_link = any(a["href"].startswith("#") and len(a["href"]) > 1 for a in first_links)
        if not has_main and not has_skip_link:
            findings.append(self.finding(
                "ACC_KBD_06_BYPASS_BLOCKS", moderate, "No skip link or main landmark to bypass repeated content",
            ))

        keys = Counter(
            " ".join(tag.get_attribute_list("accesskey")).strip().lower()
            for tag in dom.find_all(attrs={"accesskey": True})
        )
        duplicates = [key for key, count in keys.items() if key and count > 1]
        findings += self.grouped(
            "ACC_KBD_08_ACCESS_KEY_DUPLICATE", moderate, [f"accesskey={k}" for k in duplicates],
            "accesskey value is used more than once",
        )
        return findings


# ============================================================================
# Media and images
# ============================================================================

_FILENAME_ALT = re.compile(r"\.(jpe?g|png|gif|webp|avif|svg)$", re.IGNORECASE)
PLACEHOLDER_ALTS = frozenset({"image", "img", "photo", "picture", "graphic", "icon", "logo", "untitled"})


class MediaWorker(RuleWorker):
    kind = WorkerKind.media
    rule_keys = frozenset({
        "ACC_IMG_01_ALT_TEXT_MISSING",
        "ACC_IMG_03_ALT_TEXT_INFORMATIVE",
        "ACC_IMG_05_IMAGE_TEXT_REDUNDANT",
        "ACC_MED_01_VIDEO_CAPTIONS",
        "ACC_MED_02_AUDIO_TRANSCRIPT",
        "ACC_MED_03_VIDEO_AUDIO_DESC",
    })
    remediations = {
        "ACC_IMG_01_ALT_TEXT_MISSING": _wcag("1.1.1", "Add alt text; use alt=\"\" for decorative images."),
        "ACC_IMG_03_ALT_TEXT_INFORMATIVE": _wcag("1.1.1", "Describe what the image shows, not its file name."),
        "ACC_IMG_05_IMAGE_TEXT_REDUNDANT": _wcag("1.1.1", "Avoid repeating adjacent link text in alt text."),
        "ACC_MED_01_VIDEO_CAPTIONS": _wcag("1.2.2", "Provide captions with a <track kind=\"captions\">."),
        "ACC_MED_02_AUDIO_TRANSCRIPT": _wcag("1.2.1", "Link a transcript next to audio content."),
        "ACC_MED_03_VIDEO_AUDIO_DESC": _wcag("1.2.5", "Provide audio description for video content."),
    }

    def evaluate(self, snapshot: PageSnapshot) -> List[FindingDraft]:
        dom = snapshot.dom

        missing_alt, uninformative, redundant = [], [], []
        for img in dom.find_all("img"):
            if img.get("role") in ("presentation", "none") or img.get("aria-hidden") == "true":
                continue
            if not img.has_attr("alt"):
                if not (img.get("aria-label") or img.get("aria-labelledby")):
                    missing_alt.append(img)
                continue
            alt = img["alt"].strip()
            if not alt:
                continue
            if _FILENAME_ALT.search(alt) or alt.lower() in PLACEHOLDER_ALTS:
                uninformative.append(img)
            link = img.find_parent("a")
            if link is not None and link.get_text(" ", strip=True).lower() == alt.lower():
                redundant.append(img)

        videos = dom.find_all("video")
        no_captions = [v for v in videos if not _has_track(v, ("captions", "subtitles"))]
        no_description = [v for v in videos if not _has_track(v, ("descriptions",))]

        no_transcript = []
        for audio in dom.find_all("audio"):
            context = audio.parent.get_text(" ", strip=True).lower() if audio.parent else ""
            if "transcript" not in context and not audio.has_attr("aria-describedby"):
                no_transcript.append(audio)

        findings = []
        findings += self.grouped("ACC_IMG_01_ALT_TEXT_MISSING", critical, missing_alt, "Image has no text alternative")
        findings += self.grouped(
            "ACC_IMG_03_ALT_TEXT_INFORMATIVE", moderate, uninformative, "Alt text does not describe the image"
        )
        findings += self.grouped(
            "ACC_IMG_05_IMAGE_TEXT_REDUNDANT", minor, redundant, "Alt text repeats the surrounding link text"
        )
        findings += self.grouped("ACC_MED_01_VIDEO_CAPTIONS", critical, no_captions, "Video has no captions track")
        findings += self.grouped("ACC_MED_02_AUDIO_TRANSCRIPT", serious, no_transcript, "Audio has no transcript")
        findings += self.grouped(
            "ACC_MED_03_VIDEO_AUDIO_DESC", moderate, no_description, "Video has no audio description track"
        )
        return findings


def _has_track(media: Tag, kinds) -> bool:
    return any((track.get("kind") or "").lower() in kinds for track in media.find_all("track"))


# ============================================================================
# Forms
# ============================================================================

UNLABELLED_INPUT_TYPES = ("hidden", "submit", "button", "reset", "image")
AUTOCOMPLETE_HINTS = {
    "email": "email",
    "tel": "tel",
    "phone": "tel",
    "name": "name",
    "address": "street-address",
    "postal": "postal-code",
    "zip": "postal-code",
}


class FormsWorker(RuleWorker):
    kind = WorkerKind.forms
    rule_keys = frozenset({
        "ACC_FRM_01_LABEL_MISSING",
        "ACC_FRM_02_LABEL_FOR_ID_MISMATCH",
        "ACC_FRM_04_FIELDSET_LEGEND_MISSING",
        "ACC_FRM_09_PLACEHOLDER_LABEL",
        "ACC_FRM_10_BUTTON_NAME_MISSING",
        "ACC_FRM_13_AUTOCOMPLETE_MISSING",
    })
    remediations = {
        "ACC_FRM_01_LABEL_MISSING": _wcag("1.3.1", "Associate a <label> with every form control."),
        "ACC_FRM_02_LABEL_FOR_ID_MISMATCH": _wcag("1.3.1", "Make label[for] match the id of its control."),
        "ACC_FRM_04_FIELDSET_LEGEND_MISSING": _wcag("1.3.1", "Group related controls in a fieldset with a legend."),
        "ACC_FRM_09_PLACEHOLDER_LABEL": _wcag("3.3.2", "Placeholders disappear on input; add a visible label."),
        "ACC_FRM_10_BUTTON_NAME_MISSING": _wcag("4.1.2", "Give every button an accessible name."),
        "ACC_FRM_13_AUTOCOMPLETE_MISSING": _wcag("1.3.5", "Add autocomplete tokens to personal data fields."),
    }

    def evaluate(self, snapshot: PageSnapshot) -> List[FindingDraft]:
        dom = snapshot.dom
        ids = snapshot.element_ids
        label_targets = {label["for"] for label in dom.find_all("label", attrs={"for": True})}

        unlabelled, placeholder_only, autocomplete_missing = [], [], []
        for control in dom.find_all(["input", "select", "textarea"]):
            input_type = (control.get("type") or "text").lower()
            if control.name == "input" and input_type in UNLABELLED_INPUT_TYPES:
                continue
            labelled = (
                (control.get("id") and control["id"] in label_targets)
                or control.find_parent("label") is not None
                or (control.get("aria-label") or "").strip()
                or control.get("aria-labelledby")
                or (control.get("title") or "").strip()
            )
            if not labelled:
                if control.get("placeholder"):
                    placeholder_only.append(control)
                else:
                    unlabelled.append(control)

            if control.name == "input" and not control.has_attr("autocomplete"):
                hint = f"{input_type} {control.get('name') or ''} {control.get('id') or ''}".lower()
                if any(key in hint for key in AUTOCOMPLETE_HINTS):
                    autocomplete_missing.append(control)

        mismatched = [label for label in dom.find_all("label", attrs={"for": True}) if label["for"] not in ids]

        nameless_buttons = [button for button in dom.find_all("button") if not accessible_text(button)]
        nameless_buttons += [
            tag for tag in dom.find_all("input", attrs={"type": "image"})
            if not (tag.get("alt") or tag.get("aria-label") or tag.get("title"))
        ]
        nameless_buttons += [
            tag for tag in dom.find_all("input", attrs={"type": "button"})
            if not (tag.get("value") or tag.get("aria-label") or tag.get("title"))
        ]

        ungrouped = [fs for fs in dom.find_all("fieldset") if fs.find("legend") is None]
        radio_groups = defaultdict(list)
        for radio in dom.find_all("input", attrs={"type": "radio", "name": True}):
            radio_groups[radio["name"]].append(radio)
        for name, radios in radio_groups.items():
            if len(radios) > 1 and radios[0].find_parent("fieldset") is None \
                    and radios[0].find_parent(attrs={"role": "radiogroup"}) is None:
                ungrouped.append(f"input[name={name}]")

        findings = []
        findings += self.grouped("ACC_FRM_01_LABEL_MISSING", critical, unlabelled, "Form control has no label")
        findings += self.grouped(
            "ACC_FRM_02_LABEL_FOR_ID_MISMATCH", serious, mismatched, "label[for] does not match any control id"
        )
        findings += self.grouped(
            "ACC_FRM_04_FIELDSET_LEGEND_MISSING", moderate, ungrouped, "Related controls are not grouped with a legend"
        )
        findings += self.grouped(
            "ACC_FRM_09_PLACEHOLDER_LABEL", moderate, placeholder_only, "Placeholder is used as the only label"
        )
        findings += self.grouped("ACC_FRM_10_BUTTON_NAME_MISSING", critical, nameless_buttons, "Button has no accessible name")
        findings += self.grouped(
            "ACC_FRM_13_AUTOCOMPLETE_MISSING", minor, autocomplete_missing,
            "Personal data field has no autocomplete attribute",
        )
        return findings


# ============================================================================
# Document structure
# ============================================================================

UNINFORMATIVE_TITLES = frozenset({"home", "untitled", "page", "document", "index", "new page", "welcome"})
LIST_CHILD_TAGS = ("li", "script", "template")


class StructureWorker(RuleWorker):
    kind = WorkerKind.structure
    rule_keys = frozenset({
        "ACC_STR_01_HEADING_ORDER",
        "ACC_STR_02_NO_H1",
        "ACC_STR_03_MULTIPLE_H1",
        "ACC_STR_04_PAGE_LANG_MISSING",
        "ACC_STR_06_PAGE_TITLE_MISSING",
        "ACC_STR_07_PAGE_TITLE_UNINFORMATIVE",
        "ACC_STR_09_SKIP_LINK_BROKEN",
        "ACC_STR_10_LANDMARK_MISSING",
        "ACC_STR_11_LANDMARK_DUPLICATE",
        "ACC_STR_12_LIST_STRUCTURE_INVALID",
    })
    remediations = {
        "ACC_STR_01_HEADING_ORDER": _wcag("1.3.1", "Do not skip heading levels."),
        "ACC_STR_02_NO_H1": _wcag("1.3.1", "Start the page content with a single h1."),
        "ACC_STR_03_MULTIPLE_H1": _wcag("1.3.1", "Use one h1 per page."),
        "ACC_STR_04_PAGE_LANG_MISSING": _wcag("3.1.1", "Set the lang attribute on the html element."),
        "ACC_STR_06_PAGE_TITLE_MISSING": _wcag("2.4.2", "Give the page a descriptive <title>."),
        "ACC_STR_07_PAGE_TITLE_UNINFORMATIVE": _wcag("2.4.2", "Describe the page's topic in its title."),
        "ACC_STR_09_SKIP_LINK_BROKEN": _wcag("2.4.1", "Point skip links at an existing target id."),
        "ACC_STR_10_LANDMARK_MISSING": _wcag("1.3.1", "Wrap the primary content in a <main> landmark."),
        "ACC_STR_11_LANDMARK_DUPLICATE": _wcag("1.3.1", "Use one main landmark; label repeated navigation."),
        "ACC_STR_12_LIST_STRUCTURE_INVALID": _wcag("1.3.1", "Lists may only contain li elements."),
    }

    def evaluate(self, snapshot: PageSnapshot) -> List[FindingDraft]:
        dom = snapshot.dom
        findings = []

        headings = dom.find_all(re.compile(r"^h[1-6]$"))
        skipped = []
        previous = 0
        for heading in headings:
            level = int(heading.name[1])
            if previous and level > previous + 1:
                skipped.append(heading)
            previous = level
        findings += self.grouped("ACC_STR_01_HEADING_ORDER", moderate, skipped, "Heading level skipped")

        h1s = [h for h in headings if h.name == "h1"]
        if not h1s:
            findings.append(self.finding("ACC_STR_02_NO_H1", serious, "Page has no h1 heading"))
        elif len(h1s) > 1:
            findings += self.grouped("ACC_STR_03_MULTIPLE_H1", minor, h1s, "Page has more than one h1 heading")

        html = dom.find("html")
        if html is None or not (html.get("lang") or "").strip():
            findings.append(self.finding("ACC_STR_04_PAGE_LANG_MISSING", serious, "html element has no lang attribute"))

        title = dom.find("title")
        title_text = title.get_text(strip=True) if title else ""
        if not title_text:
            findings.append(self.finding("ACC_STR_06_PAGE_TITLE_MISSING", serious, "Page has no title"))
        elif title_text.lower() in UNINFORMATIVE_TITLES or len(title_text) < 4:
            findings.append(self.finding(
                "ACC_STR_07_PAGE_TITLE_UNINFORMATIVE", moderate, f"Page title '{title_text}' is not descriptive",
            ))

        broken_skip = [
            a for a in dom.find_all("a", href=True)
            if a["href"].startswith("#") and len(a["href"]) > 1
            and "skip" in a.get_text(" ", strip=True).lower()
            and a["href"][1:] not in snapshot.element_ids
        ]
        findings += self.grouped("ACC_STR_09_SKIP_LINK_BROKEN", moderate, broken_skip, "Skip link target does not exist")

        mains = dom.find_all("main") + dom.find_all(attrs={"role": "main"})
        if not mains:
            findings.append(self.finding("ACC_STR_10_LANDMARK_MISSING", moderate, "Page has no main landmark"))
        duplicates = mains[1:] if len(mains) > 1 else []
        navs = dom.find_all("nav")
        if len(navs) > 1:
            duplicates += [n for n in navs if not (n.get("aria-label") or n.get("aria-labelledby"))]
        findings += self.grouped(
            "ACC_STR_11_LANDMARK_DUPLICATE", minor, duplicates, "Repeated landmark is not distinguishable"
        )

        invalid_lists = [
            lst for lst in dom.find_all(["ul", "ol"])
            if any(isinstance(child, Tag) and child.name not in LIST_CHILD_TAGS for child in lst.children)
        ]
        findings += self.grouped(
            "ACC_STR_12_LIST_STRUCTURE_INVALID", moderate, invalid_lists, "List contains non-list-item children"
        )
        return findings


# ============================================================================
# Tables
# ============================================================================

class TablesWorker(RuleWorker):
    kind = WorkerKind.tables
    rule_keys = frozenset({
        "ACC_TBL_01_HEADER_MISSING",
        "ACC_TBL_02_CAPTION_MISSING",
        "ACC_TBL_03_SCOPE_MISSING",
        "ACC_TBL_04_COMPLEX_TABLE_HEADERS",
        "ACC_TBL_05_LAYOUT_TABLE_HEADERS",
    })
    remediations = {
        "ACC_TBL_01_HEADER_MISSING": _wcag("1.3.1", "Mark header cells with <th>."),
        "ACC_TBL_02_CAPTION_MISSING": _wcag("1.3.1", "Describe data tables with a <caption>."),
        "ACC_TBL_03_SCOPE_MISSING": _wcag("1.3.1", "Add scope=\"row\" or scope=\"col\" to header cells."),
        "ACC_TBL_04_COMPLEX_TABLE_HEADERS": _wcag("1.3.1", "Associate cells with headers via id/headers."),
        "ACC_TBL_05_LAYOUT_TABLE_HEADERS": _wcag("1.3.1", "Layout tables must not use th, caption or summary."),
    }

    def evaluate(self, snapshot: PageSnapshot) -> List[FindingDraft]:
        no_headers, no_caption, no_scope, complex_tables, layout_semantics = [], [], [], [], []

        for table in snapshot.dom.find_all("table"):
            headers = table.find_all("th")
            if table.get("role") in ("presentation", "none"):
                if headers or table.find("caption") or table.has_attr("summary"):
                    layout_semantics.append(table)
                continue

            rows = table.find_all("tr")
            if len(rows) < 2:
                continue

            if not headers:
                no_headers.append(table)
                continue

            if table.find("caption") is None and not (table.get("aria-label") or table.get("aria-labelledby")):
                no_caption.append(table)

            row_headers = [row.find(True) for row in rows[1:]]
            has_row_headers = any(cell is not None and cell.name == "th" for cell in row_headers)
            has_col_headers = any(cell.name == "th" for cell in rows[0].find_all(["th", "td"]))
            if has_row_headers and has_col_headers and any(not th.has_attr("scope") for th in headers):
                no_scope.append(table)

            spans = table.find_all(["td", "th"], attrs={"rowspan": True}) + \
                table.find_all(["td", "th"], attrs={"colspan": True})
            multi = [cell for cell in spans if _span(cell.get("rowspan")) > 1 or _span(cell.get("colspan")) > 1]
            if multi and any(not td.has_attr("headers") for td in table.find_all("td")):
                complex_tables.append(table)

        findings = []
        findings += self.grouped("ACC_TBL_01_HEADER_MISSING", serious, no_headers, "Data table has no header cells")
        findings += self.grouped("ACC_TBL_02_CAPTION_MISSING", minor, no_caption, "Data table has no caption")
        findings += self.grouped(
            "ACC_TBL_03_SCOPE_MISSING", moderate, no_scope, "Table with row and column headers lacks scope"
        )
        findings += self.grouped(
            "ACC_TBL_04_COMPLEX_TABLE_HEADERS", serious, complex_tables,
            "Table with merged cells does not associate cells with headers",
        )
        findings += self.grouped(
            "ACC_TBL_05_LAYOUT_TABLE_HEADERS", moderate, layout_semantics, "Layout table uses data table markup"
        )
        return findings


def _span(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 1
