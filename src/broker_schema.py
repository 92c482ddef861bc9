# src/broker_schema.py
"""
Generates JSON Schema files for the content models in src/broker_objects.py,
placing each schema under content/meta/<ClassName>/schema.json so content authors
get editor validation for commodities, locations, intel templates and settings.
"""
import json
import logging
from pathlib import Path
from typing import List, Optional

from broker_register import LOCAL_CONTENT, load_models

logger = logging.getLogger(__name__)


def main(output_base: Optional[Path] = None) -> List[Path]:
    output_base = output_base or LOCAL_CONTENT / "meta"
    output_base.mkdir(parents=True, exist_ok=True)

    written: List[Path] = []
    for name, cls in sorted(load_models().items()):
        # Prepare output folder: content/meta/<ClassName>/
        model_dir = output_base / name
        model_dir.mkdir(parents=True, exist_ok=True)

        schema_file = model_dir / "schema.json"
        with open(schema_file, "w", encoding="utf-8") as f:
            json.dump(cls.model_json_schema(), f, indent=2)

        logger.info("Wrote schema for '%s' to %s", name, schema_file)
        written.append(schema_file)
    return written


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main()
