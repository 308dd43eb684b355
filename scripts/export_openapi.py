#!/usr/bin/env python
"""
Export the Infinite Pages OpenAPI schema to docs/openapi.json
"""
import json
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))


def export_schema(output_path: Path) -> dict:
    from infinite_pages.api_server import app

    schema = app.openapi()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(schema, f, indent=2, ensure_ascii=False)
    return schema


if __name__ == "__main__":
    target = project_root / "docs" / "openapi.json"
    try:
        schema = export_schema(target)
    except Exception as e:
        print(f"✗ Error exporting OpenAPI schema: {e}", file=sys.stderr)
        sys.exit(1)

    paths = schema.get("paths", {})
    tags = sorted({tag for ops in paths.values() for op in ops.values() for tag in op.get("tags", [])})
    print(f"✓ OpenAPI schema exported to {target}")
    print(f"  API: {schema.get('info', {}).get('title')} {schema.get('info', {}).get('version')}")
    print(f"  Endpoints: {len(paths)}")
    print(f"  Tags: {', '.join(tags)}")
