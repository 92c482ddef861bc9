# src/broker_register.py
"""
Scans the local `content/` directory plus any mod folders under `content_custom/`,
loads all JSON definitions into Pydantic models, and registers them in a central registry.
Ignores any subfolder named "meta" or starting with a dot.
Models with an `id` field are stored in a dict by id, later sources overriding earlier
definitions; other models (e.g. BrokerSettings) are stored in lists.
"""
import json
import inspect
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ValidationError

import broker_objects as G

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
# Local content directory
LOCAL_CONTENT = PROJECT_ROOT / "content"
# Each subfolder of content_custom/ is a mod, loaded in name order after the local content
MOD_ROOT = PROJECT_ROOT / "content_custom"

PURCHASED_INTEL_TEMPLATES = "purchased_intel"
EXPIRED_INTEL_TEMPLATES = "expired_intel"

RawRegistry = Dict[str, Union[List[BaseModel], Dict[str, BaseModel]]]


def is_valid_folder(path: Path) -> bool:
    return (
        path.is_dir()
        and not path.name.startswith('.')
        and path.name != 'meta'
    )


def mod_paths() -> List[Path]:
    if not MOD_ROOT.exists():
        return []
    return sorted(p for p in MOD_ROOT.iterdir() if is_valid_folder(p))


def load_models() -> Dict[str, type]:
    """
    Collect the public Pydantic content models from broker_objects.
    Returns a mapping of model_name -> class. Live-state models (leading underscore) are skipped.
    """
    models: Dict[str, type] = {}
    for name, cls in inspect.getmembers(G, inspect.isclass):
        if name.startswith("_"):
            continue
        if issubclass(cls, BaseModel) and cls is not BaseModel:
            models[name] = cls
    return models


def register_content(folders: Iterable[Path]) -> RawRegistry:
    """
    Load all JSON files in each valid subfolder of the given folders,
    parse them with the corresponding Pydantic model based on folder name,
    and collect them into a registry dict:
      - For models with an `id` field: { model_name: { id: instance, ... } }
      - For others: { model_name: [instance, ...] }
    Files that fail to parse are logged and skipped.
    """
    models = load_models()
    id_models = {name for name, cls in models.items() if 'id' in cls.model_fields}

    registry: RawRegistry = {}
    for name in models:
        registry[name] = {} if name in id_models else []

    for folder in folders:
        if not folder.exists():
            continue
        for sub in sorted(folder.iterdir()):
            if not is_valid_folder(sub):
                continue
            model_name = sub.name
            model_cls = models.get(model_name)
            if model_cls is None:
                logger.debug("Skipping unknown content folder %s", sub)
                continue
            for json_file in sorted(sub.glob("*.json")):
                try:
                    data = json.loads(json_file.read_text(encoding="utf-8"))
                    instance = model_cls.model_validate(data)
                except (ValueError, ValidationError) as e:
                    logger.warning("Error parsing %s: %s", json_file, e)
                    continue
                if model_name in id_models:
                    key = getattr(instance, 'id')
                    registry[model_name][key] = instance
                else:
                    registry[model_name].append(instance)

    return registry


def validate_intel_catalog(catalog: Dict[G.IntelMessageKey, G.IntelContent]) -> None:
    """Every IntelMessageKey must resolve to a template; a gap is a content bug, not a runtime fallback."""
    missing = [key.value for key in G.IntelMessageKey if key not in catalog]
    if missing:
        raise G.ContentError(f"IntelContent missing templates for: {', '.join(sorted(missing))}")


class ContentRegistry:
    """Typed view over the raw registry."""

    def __init__(self, raw: RawRegistry):
        self.raw = raw
        self.commodities: Dict[str, G.Commodity] = raw.get("Commodity", {})  # type: ignore[assignment]
        self.locations: Dict[str, G.Location] = raw.get("Location", {})  # type: ignore[assignment]
        self.intel_content: Dict[G.IntelMessageKey, G.IntelContent] = raw.get("IntelContent", {})  # type: ignore[assignment]
        self.news_templates: Dict[str, G.NewsTemplateSet] = raw.get("NewsTemplateSet", {})  # type: ignore[assignment]
        settings: List[G.BrokerSettings] = raw.get("BrokerSettings", [])  # type: ignore[assignment]
        self.settings = settings[-1] if settings else G.BrokerSettings()

    def commodity(self, commodity_id: str) -> G.Commodity:
        return self.commodities[commodity_id]

    def location(self, location_id: str) -> G.Location:
        return self.locations[location_id]

    def templates(self, set_id: str) -> List[str]:
        entry = self.news_templates.get(set_id)
        return entry.templates if entry else []

    def validate(self) -> None:
        if not self.commodities:
            raise G.ContentError("no Commodity definitions loaded")
        if not self.locations:
            raise G.ContentError("no Location definitions loaded")
        validate_intel_catalog(self.intel_content)
        if not self.templates(PURCHASED_INTEL_TEMPLATES):
            raise G.ContentError(f"NewsTemplateSet '{PURCHASED_INTEL_TEMPLATES}' is missing")


def load_registry(folders: Optional[Iterable[Path]] = None, *, validate: bool = True) -> ContentRegistry:
    """Load content (mods override local content) and check it is complete."""
    sources = list(folders) if folders is not None else [LOCAL_CONTENT] + mod_paths()
    registry = ContentRegistry(register_content(sources))
    if validate:
        registry.validate()
    return registry


def main():
    logging.basicConfig(level=logging.INFO)
    registry = load_registry(validate=False)
    for model_name, collection in registry.raw.items():
        logger.info("Loaded %d %s entries.", len(collection), model_name)
    registry.validate()


if __name__ == "__main__":
    main()
