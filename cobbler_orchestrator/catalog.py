"""
Read-only catalog of prompt templates and policy documents.

Assets bundled under cobbler_orchestrator/assets/ are loaded once into a
name-to-content mapping keyed by their path relative to the assets
directory without suffix (e.g. "prompts/measure", "policies/planning").
Configured overrides replace individual entries; nothing writes back.
"""

from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Mapping, Optional

import yaml

from cobbler_orchestrator.errors import CobblerError

if TYPE_CHECKING:
    from cobbler_orchestrator.config import CobblerConfig


MEASURE_PROMPT = "prompts/measure"
STITCH_PROMPT = "prompts/stitch"
PLANNING_POLICY = "policies/planning"
ISSUE_FORMAT_POLICY = "policies/issue_format"
EXECUTION_POLICY = "policies/execution"


def get_assets_path() -> Path:
    """Get the path to bundled assets."""
    return Path(__file__).parent / "assets"


def _load_dir(root: Path) -> dict[str, str]:
    entries = {}
    if not root.is_dir():
        return entries
    for path in sorted(root.rglob("*.yaml")):
        name = path.relative_to(root).with_suffix("").as_posix()
        entries[name] = path.read_text(encoding="utf-8")
    return entries


class AssetCatalog:
    """Immutable name-to-content mapping of prompts and policies."""

    def __init__(self, entries: Mapping[str, str]) -> None:
        self._entries = MappingProxyType(dict(entries))

    @classmethod
    def load(
        cls,
        root: Optional[Path] = None,
        overrides: Optional[Mapping[str, str]] = None,
    ) -> AssetCatalog:
        """
        Load every asset under root (the bundled assets by default).

        Args:
            root: Directory to load from.
            overrides: Name to content entries that replace loaded ones.
                       Empty values are ignored.
        """
        entries = _load_dir(root or get_assets_path())
        for name, content in (overrides or {}).items():
            if content:
                entries[name] = content
        return cls(entries)

    @classmethod
    def for_config(cls, config: CobblerConfig) -> AssetCatalog:
        """Bundled assets with the configured prompt overrides applied."""
        return cls.load(overrides={
            MEASURE_PROMPT: config.measure.prompt,
            STITCH_PROMPT: config.stitch.prompt,
        })

    def names(self) -> list[str]:
        return sorted(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def get(self, name: str) -> str:
        """
        Return the content of an asset.

        Raises:
            CobblerError: If the asset does not exist.
        """
        try:
            return self._entries[name]
        except KeyError:
            raise CobblerError("no such asset", "catalog", name) from None

    def get_yaml(self, name: str) -> object:
        """Return an asset parsed as YAML."""
        try:
            return yaml.safe_load(self.get(name))
        except yaml.YAMLError as e:
            raise CobblerError(f"invalid YAML: {e}", "catalog", name)

    def template(self, name: str) -> dict[str, str]:
        """
        Return a prompt template as a mapping of section name to text.

        Raises:
            CobblerError: If the asset is not a YAML mapping.
        """
        data = self.get_yaml(name)
        if not isinstance(data, dict):
            raise CobblerError("prompt template must be a mapping", "catalog", name)
        return {str(k): "" if v is None else str(v) for k, v in data.items()}


def substitute(text: str, values: Mapping[str, object]) -> str:
    """Replace {key} placeholders; unknown placeholders are left as they are."""
    for key, value in values.items():
        text = text.replace("{" + key + "}", str(value))
    return text
