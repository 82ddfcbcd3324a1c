#!/usr/bin/env python3
"""
check_payload.py

Purpose:
- Load a card payload JSON file
- Report every schema violation
- Run the normalizer and report skipped records and duplicate ids

Exit code 1 on a schema failure, 0 otherwise. Never modifies the file.
"""

import sys

from cardsearch.errors import SchemaError
from cardsearch.utils.loader import check_payload, load_payload, normalize_payload, payload_part


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 1:
        print("Usage: check_payload.py <payload.json>")
        return 2

    path = argv[0]
    try:
        payload = load_payload(path)
    except FileNotFoundError as e:
        print(f"Error: {e}")
        return 1
    except ValueError as e:
        print(f"Error: {path} is not valid JSON ({e})")
        return 1

    # -------- Schema --------
    errors = check_payload(payload)
    if errors:
        print("Schema errors:")
        for err in errors:
            print(f"  - {err}")
        return 1

    # -------- Normalize --------
    try:
        normalized = normalize_payload(payload)
    except SchemaError as e:
        print(f"Error: {e}")
        return 1

    raw_count = len(payload_part(payload, "documents"))
    skipped = len(normalized.errors)
    duplicates = raw_count - skipped - len(normalized.documents)

    for err in normalized.errors:
        print(f"Skipped {err}")

    print(f"Documents: {len(normalized.documents)} (raw {raw_count}, skipped {skipped}, duplicate ids {duplicates})")
    print(f"Tags: {len(normalized.tag_universe)}")
    print("Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
