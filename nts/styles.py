"""Design-system configuration and the per-document style registry.

Classes
-------
DesignSystem
    Loads and queries the ``design-system.yaml`` configuration.
StyleSpec
    Immutable description of one named paragraph style.
StyleRegistry
    Registers the configured styles in an output document once and applies
    them to paragraphs by name.
"""

from __future__ import annotations

import logging
import re
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

import yaml
from docx.enum.style import WD_STYLE_TYPE
from docx.oxml.ns import qn
from docx.shared import Pt, RGBColor, Twips

if TYPE_CHECKING:
    from docx.document import Document
    from docx.styles.style import ParagraphStyle
    from docx.text.paragraph import Paragraph as DocxParagraph

logger = logging.getLogger(__name__)

# ── Constants ──────────────────────────────────────────────────────────

_HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}){1,2}$")

_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config" / "design-system.yaml"

# Theme font attributes on built-in styles win over explicit font names.
_THEME_FONT_ATTRS = ("w:asciiTheme", "w:hAnsiTheme", "w:eastAsiaTheme", "w:cstheme")

BODY = "Body"
ASIDE = "Aside"
HEADING_1 = "Heading 1"
HEADING_2 = "Heading 2"
LIST_PARAGRAPH = "List Paragraph"


def hex_to_rgb(hex_color: str) -> RGBColor:
    """Convert a ``#RRGGBB`` hex string to a python-docx *RGBColor*.

    The leading ``#`` is optional.
    """
    hex_color = hex_color.lstrip("#")
    if len(hex_color) == 3:
        hex_color = "".join(ch * 2 for ch in hex_color)
    if len(hex_color) != 6:
        raise ValueError(f"Invalid hex color: #{hex_color}")
    return RGBColor.from_string(hex_color.upper())


# ── DesignSystem ──────────────────────────────────────────────────────


class DesignSystem:
    """Loads and queries the design-system YAML configuration.

    Parameters
    ----------
    config_path : str or Path, optional
        Path to the YAML configuration file.  Defaults to the copy shipped
        in ``nts/config/design-system.yaml``.
    theme_path : str or Path or None, optional
        Path to an optional theme overlay YAML.  Values in the theme file
        are deep-merged on top of the base configuration.

    Raises
    ------
    FileNotFoundError
        If the requested configuration file does not exist.
    ValueError
        If the top level of the YAML is not a mapping.
    yaml.YAMLError
        If the YAML is malformed.
    """

    def __init__(
        self,
        config_path: str | Path | None = None,
        theme_path: str | Path | None = None,
    ) -> None:
        self._config_path = Path(config_path) if config_path else _DEFAULT_CONFIG_PATH
        self._raw: dict[str, Any] = {}

        self._raw = self._read(self._config_path)

        if theme_path is not None:
            self._apply_theme(Path(theme_path))

        logger.info("DesignSystem loaded from %s", self._config_path)

    # ── Loading / merging ──────────────────────────────────────────

    @staticmethod
    def _read(path: Path) -> dict[str, Any]:
        if not path.is_file():
            raise FileNotFoundError(
                f"Design-system configuration not found: {path}"
            )

        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)

        if not isinstance(data, dict):
            raise ValueError(
                f"Expected a YAML mapping at the top level in {path}"
            )

        logger.debug(
            "Loaded %d colors, %d styles from %s",
            len(data.get("colors", {})),
            len(data.get("styles", {})),
            path,
        )
        return data

    def _apply_theme(self, theme_path: Path) -> None:
        """Deep-merge a theme overlay on top of the current configuration."""
        theme_data = self._read(theme_path)
        self._raw = self._deep_merge(self._raw, theme_data)
        logger.info("Applied theme overlay from %s", theme_path)

    @staticmethod
    def _deep_merge(base: dict, overlay: dict) -> dict:
        """Recursively merge *overlay* into a copy of *base*.

        Overlay values take precedence.  Nested dicts are merged rather than
        replaced outright.
        """
        result = deepcopy(base)
        for key, value in overlay.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = DesignSystem._deep_merge(result[key], value)
            else:
                result[key] = deepcopy(value)
        return result

    # ── Color resolution ───────────────────────────────────────────

    def resolve_color(self, name: str) -> str:
        """Resolve a color name to its hex code.

        Parameters
        ----------
        name : str
            A color name defined in the ``colors`` section of the YAML or an
            already-resolved hex string (e.g. ``"#999999"``).

        Returns
        -------
        str
            The hex color code, including the ``#`` prefix.

        Raises
        ------
        KeyError
            If *name* is not a known color name and is not a hex color.
        """
        if not name:
            return "#000000"

        if _HEX_COLOR_RE.match(name):
            return name

        colors = self._raw.get("colors", {})
        if name in colors:
            value = colors[name]
            if _HEX_COLOR_RE.match(value):
                return value
            return self.resolve_color(value)

        raise KeyError(f"Unknown color name: '{name}'")

    # ── Styles ─────────────────────────────────────────────────────

    @property
    def font(self) -> str:
        return self._raw.get("typography", {}).get("font", "Helvetica")

    def get_style_specs(self) -> list[StyleSpec]:
        """Return every configured paragraph style, base styles first."""
        specs = []
        for name, raw in self._raw.get("styles", {}).items():
            raw = raw or {}
            color = raw.get("color")
            specs.append(StyleSpec(
                name=name,
                font=raw.get("font", self.font),
                size=int(raw.get("size", 24)),
                bold=bool(raw.get("bold", False)),
                italic=bool(raw.get("italic", False)),
                color=self.resolve_color(color) if color else None,
                spacing_before=int(raw.get("spacing_before", 0)),
                spacing_after=int(raw.get("spacing_after", 0)),
                base_style=raw.get("base"),
                next_style=raw.get("next"),
            ))
        return specs

    # ── Lists, tables, images ──────────────────────────────────────

    def get_list_config(self) -> dict[str, Any]:
        return deepcopy(self._raw.get("lists", {}))

    def get_component_style(self, component: str) -> dict[str, Any]:
        """Return a component configuration with its colors resolved.

        Raises
        ------
        KeyError
            If the component name is not found in the configuration.
        """
        raw_style = self._raw.get("components", {}).get(component)
        if raw_style is None:
            raise KeyError(f"Unknown component: '{component}'")
        style = dict(raw_style)
        for key, value in style.items():
            if key.endswith("color") and isinstance(value, str):
                style[key] = self.resolve_color(value)
        return style

    # ── Page configuration ─────────────────────────────────────────

    def get_page_config(self) -> dict[str, Any]:
        return deepcopy(self._raw.get("page", {}))

    @property
    def usable_width(self) -> int:
        """The usable content width in DXA (page width minus margins)."""
        page = self._raw.get("page", {})
        explicit = page.get("usable_width")
        if explicit is not None:
            return int(explicit)

        width = page.get("width", 12240)
        margins = page.get("margins", {})
        left = margins.get("left", 1440)
        right = margins.get("right", 1440)
        return int(width - left - right)


# ── StyleRegistry ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class StyleSpec:
    """A named paragraph style.  Sizes in half-points, spacing in twips."""
    name: str
    font: str
    size: int
    bold: bool = False
    italic: bool = False
    color: Optional[str] = None
    spacing_before: int = 0
    spacing_after: int = 0
    base_style: Optional[str] = None
    next_style: Optional[str] = None


class StyleRegistry:
    """The fixed set of named paragraph styles of one output document.

    Styles are written into the document once by :meth:`register_all` and
    afterwards only referenced by name.
    """

    def __init__(self, design_system: DesignSystem) -> None:
        self._specs = {spec.name: spec for spec in design_system.get_style_specs()}

    @property
    def names(self) -> list[str]:
        return list(self._specs)

    def get(self, name: str) -> StyleSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise KeyError(f"Unknown style: '{name}'") from None

    def register_all(self, document: Document) -> None:
        """Create (or update the built-in) paragraph styles in *document*."""
        for spec in self._specs.values():
            self._register(document, spec)
        logger.debug("Registered %d paragraph style(s)", len(self._specs))

    def apply(self, paragraph: DocxParagraph, name: str) -> None:
        self.get(name)
        paragraph.style = name

    @staticmethod
    def _register(document: Document, spec: StyleSpec) -> ParagraphStyle:
        styles = document.styles
        try:
            style = styles[spec.name]
        except KeyError:
            style = styles.add_style(spec.name, WD_STYLE_TYPE.PARAGRAPH)

        if spec.base_style:
            style.base_style = styles[spec.base_style]
        if spec.next_style:
            style.next_paragraph_style = styles[spec.next_style]
        style.quick_style = True

        font = style.font
        font.name = spec.font
        r_fonts = style.element.rPr.rFonts
        for attr in _THEME_FONT_ATTRS:
            r_fonts.attrib.pop(qn(attr), None)
        font.size = Pt(spec.size / 2.0)
        font.bold = spec.bold
        font.italic = spec.italic
        if spec.color:
            font.color.rgb = hex_to_rgb(spec.color)

        fmt = style.paragraph_format
        fmt.space_before = Twips(spec.spacing_before)
        fmt.space_after = Twips(spec.spacing_after)
        return style
