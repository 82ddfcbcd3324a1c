# utils/loader.py
"""
Payload loader and normalizer
-----------------------------
Validates a raw payload, cleans document fields, unions declared tags
with the asset->tags map, and builds the id lookup.
"""

import hashlib
import json
import logging
import math
import os
from collections.abc import Mapping

from cardsearch.errors import DocumentError, SchemaError
from cardsearch.models import Document, NormalizedPayload
from cardsearch.utils.batching import run_batched
from cardsearch.utils.text import normalize_tag, normalize_tags

logger = logging.getLogger(__name__)

PAYLOAD_KEYS = {
    "documents": ("documents", "characters"),
    "tag_catalog": ("tag_catalog", "tagCatalog", "tags"),
    "asset_tag_map": ("asset_tag_map", "assetTagMap", "tag_map"),
}

FIELD_PATHS = {
    "name": ("name",),
    "creator_name": ("creator_name", "creator", "data.creator"),
    "description_text": ("description", "data.description"),
    "creator_notes_text": ("creator_notes", "data.creator_notes"),
    "favorite": ("favorite", "fav", "data.extensions.fav", "extensions.fav"),
    "asset": ("avatar", "data.avatar", "image"),
    "date_added": ("date_added",),
    "date_last_interaction": ("date_last_interaction", "date_last_chat"),
    "interaction_volume": ("interaction_volume", "chat_size"),
    "storage_size": ("storage_size", "data_size"),
}

SPOT_CHECK_COUNT = 3

_missing_id_warned = False


def safe_get(obj, path, fallback=None):
    """Dotted-path lookup over nested dicts."""
    cur = obj
    for part in path.split("."):
        if not isinstance(cur, Mapping) or part not in cur:
            return fallback
        cur = cur[part]
    return fallback if cur is None else cur


def _first(raw, field, fallback=None):
    for path in FIELD_PATHS[field]:
        val = safe_get(raw, path)
        if val is not None:
            return val
    return fallback


def _number(value):
    try:
        n = float(value or 0)
    except (TypeError, ValueError):
        return 0.0
    return n if math.isfinite(n) else 0.0


def _text(value):
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def payload_part(payload, part):
    for key in PAYLOAD_KEYS[part]:
        if key in payload:
            return payload[key]
    return None


def derive_id(raw):
    """Use the provided id, or synthesize a stable one from asset/name."""
    global _missing_id_warned
    if raw.get("id") is not None:
        return str(raw["id"])
    asset = _text(_first(raw, "asset", "")).strip()
    name = _text(raw.get("name", "")).strip()
    basis = asset or name or json.dumps({"n": raw.get("name"), "a": asset or None}, sort_keys=True, default=str)
    doc_id = "x_" + hashlib.sha1(basis.encode("utf-8")).hexdigest()[:12]
    if not _missing_id_warned:
        logger.warning("Document missing `id`; using ids derived from asset/name")
        _missing_id_warned = True
    return doc_id


def check_payload(payload):
    """
    Collect every schema violation in the payload.

    Returns:
        list of error strings (empty when the shape is valid)
    """
    if not isinstance(payload, Mapping):
        return ["Payload must be an object"]

    errors = []
    if not isinstance(payload_part(payload, "documents"), list):
        errors.append("`documents` must be an array")
    if not isinstance(payload_part(payload, "tag_catalog"), list):
        errors.append("`tag_catalog` must be an array")
    if not isinstance(payload_part(payload, "asset_tag_map"), Mapping):
        errors.append("`asset_tag_map` must be an object")
    return errors


def validate_payload(payload):
    """
    Validate the payload shape and spot-check the first few records.

    Returns:
        tuple: (documents, tag_catalog, asset_tag_map)

    Raises:
        SchemaError with all violations.
    """
    errors = check_payload(payload)
    if errors:
        raise SchemaError(errors)

    documents = payload_part(payload, "documents")
    for i, raw in enumerate(documents[:SPOT_CHECK_COUNT]):
        if not isinstance(raw, Mapping):
            continue
        if not isinstance(raw.get("name"), str):
            logger.warning("document[%d] missing string `name`: %r", i, raw.get("name"))
        if not isinstance(raw.get("tags"), list):
            logger.warning("document[%d] missing array `tags`: %r", i, raw.get("tags"))

    return documents, payload_part(payload, "tag_catalog"), payload_part(payload, "asset_tag_map")


def normalize_asset_map(asset_tag_map):
    return {str(k): normalize_tags(v) for k, v in asset_tag_map.items()}


def normalize_document(raw, asset_tags):
    """Build a Document from one raw record (derived metrics left at 0)."""
    if not isinstance(raw, Mapping):
        raise DocumentError(f"expected an object, got {type(raw).__name__}")

    doc_id = derive_id(raw)
    asset = _first(raw, "asset")
    asset = _text(asset) if asset else None

    own_tags = normalize_tags(raw.get("tags") or [])
    mapped = asset_tags.get(asset, []) if asset else []
    tags = list(own_tags)
    seen = set(own_tags)
    for t in mapped:
        if t not in seen:
            seen.add(t)
            tags.append(t)

    return Document(
        id=doc_id,
        name=_text(raw.get("name")),
        creator_name=_text(_first(raw, "creator_name", "")),
        tags=tags,
        description_text=_text(_first(raw, "description_text", "")),
        creator_notes_text=_text(_first(raw, "creator_notes_text", "")),
        favorite=bool(_first(raw, "favorite", False)),
        date_added=_number(_first(raw, "date_added")),
        date_last_interaction=_number(_first(raw, "date_last_interaction")),
        interaction_volume=_number(_first(raw, "interaction_volume")),
        storage_size=_number(_first(raw, "storage_size")),
        asset=asset,
        raw=dict(raw),
    )


def normalize_payload(payload, runner=None):
    """
    Validate and normalize a raw payload.

    Deduplicates by id (first occurrence wins). A bad record is logged,
    recorded in `errors` and skipped.

    Returns:
        NormalizedPayload
    """
    raw_docs, tag_catalog, asset_tag_map = validate_payload(payload)

    asset_tags = normalize_asset_map(asset_tag_map)
    tag_universe = set()
    for rec in tag_catalog:
        if isinstance(rec, Mapping):
            name = normalize_tag(_text(rec.get("name") or rec.get("id") or ""))
        else:
            name = normalize_tag(_text(rec))
        if name:
            tag_universe.add(name)
    for tags in asset_tags.values():
        tag_universe.update(tags)

    documents = []
    by_id = {}
    errors = []

    def step(start, stop):
        for idx in range(start, stop):
            try:
                doc = normalize_document(raw_docs[idx], asset_tags)
            except DocumentError as e:
                logger.warning("Skipping document[%d]: %s", idx, e)
                errors.append(f"document[{idx}]: {e}")
                continue
            if doc.id in by_id:
                continue
            documents.append(doc)
            by_id[doc.id] = doc
            tag_universe.update(doc.tags)

    run_batched(runner, len(raw_docs), step, 0.12, 0.28, "Normalizing rows")

    return NormalizedPayload(
        documents=documents,
        by_id=by_id,
        tag_universe=sorted(tag_universe),
        asset_tags=asset_tags,
        errors=errors,
    )


def load_payload(data_path: str):
    """Read a payload JSON file from disk."""
    if not os.path.exists(data_path):
        raise FileNotFoundError(f"Payload not found: {data_path}")

    with open(data_path, "r", encoding="utf-8") as f:
        return json.load(f)
