import logging

from flask import Flask, abort, jsonify, request
from flask_cors import CORS

from cardsearch.config import PORT, EngineConfig, configure_logging
from cardsearch.engine import CardSearchEngine
from cardsearch.errors import (
    EngineBusyError,
    EngineNotReadyError,
    SchemaError,
    UnknownDocumentError,
)
from cardsearch.services.analytics import overview_stats, suggest_tags, tag_frequency
from cardsearch.services.query import QueryState

logger = logging.getLogger(__name__)


def _arg_int(name, default=None):
    v = request.args.get(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        abort(400, description=f"`{name}` must be an integer")


def _arg_float(name, default=None):
    v = request.args.get(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        abort(400, description=f"`{name}` must be a number")


def _arg_bool(name, default):
    v = request.args.get(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "on")


def _similarity_options(query):
    try:
        return query.default_options(
            tag_mode=request.args.get("tag_mode"),
            text_mode=request.args.get("text_mode"),
            alpha=_arg_float("alpha"),
            idf_multiplier=_arg_float("idf_mul"),
            ngram_min=_arg_int("ngram_min"),
            ngram_max=_arg_int("ngram_max"),
            include_tags=_arg_bool("include_tags", True),
            include_text=_arg_bool("include_text", True),
            weight_tags=_arg_bool("weight_tags", True),
        )
    except ValueError as e:
        abort(400, description=str(e))


def _body_number(body, name, cast):
    v = body.get(name)
    if v is None or v == "":
        return None
    try:
        return cast(v)
    except (TypeError, ValueError):
        kind = "an integer" if cast is int else "a number"
        abort(400, description=f"`{name}` must be {kind}")


def _query_state(body):
    if not isinstance(body, dict):
        abort(400, description="query body must be an object")
    fields = QueryState.__dataclass_fields__
    values = {k: v for k, v in body.items() if k in fields and v is not None}
    for name in ("search", "expr", "sort_by", "sort_dir", "weights"):
        if not isinstance(values.get(name, ""), str):
            abort(400, description=f"`{name}` must be a string")
    bundle = values.get("bundle", "")
    if not isinstance(bundle, str) and not (
        isinstance(bundle, list) and all(isinstance(t, str) for t in bundle)
    ):
        abort(400, description="`bundle` must be a string or a list of strings")
    for name, cast in (("bundle_min", int), ("tag_count_min", int), ("tag_count_max", int),
                       ("rarity_min", float), ("rarity_max", float)):
        n = _body_number(body, name, cast)
        if n is None:
            values.pop(name, None)
        else:
            values[name] = n
    return QueryState(**values)


def _rows(docs):
    return [d.to_dict() for d in docs]


def create_app(engine: CardSearchEngine = None):
    app = Flask(__name__)
    CORS(app)
    selections = []
    engine = engine or CardSearchEngine(EngineConfig(), on_select=selections.append)
    app.config["ENGINE"] = engine
    app.config["SELECTIONS"] = selections

    @app.errorhandler(SchemaError)
    def schema_error(e):
        return jsonify({"error": "schema", "errors": e.errors}), 400

    @app.errorhandler(EngineNotReadyError)
    def not_ready(e):
        return jsonify({"error": "not_ready", "message": str(e)}), 409

    @app.errorhandler(EngineBusyError)
    def busy(e):
        return jsonify({"error": "busy", "message": str(e)}), 503

    @app.errorhandler(UnknownDocumentError)
    def unknown(e):
        return jsonify({"error": "not_found", "message": str(e)}), 404

    @app.route("/api/ingest", methods=["POST"])
    def ingest():
        payload = request.get_json(silent=True)
        try:
            accepted = engine.ingest(payload)
        except SchemaError:
            logger.exception("Ingest failed")
            raise
        corpus = engine.corpus
        return jsonify({
            "accepted": accepted,
            "status": engine.status,
            "documents": len(corpus.documents) if corpus else 0,
            "errors": corpus.errors if corpus else [],
        })

    @app.route("/api/status")
    def status():
        return jsonify({"status": engine.status, "ready": engine.ready})

    @app.route("/api/filter")
    def filter_rows():
        rows = engine.query.filter(
            expr=request.args.get("expr", ""),
            tag_count_min=_arg_int("k_min", 0),
            tag_count_max=_arg_int("k_max"),
            rarity_min=_arg_float("r_min"),
            rarity_max=_arg_float("r_max"),
        )
        return jsonify(_rows(rows))

    @app.route("/api/search")
    def search():
        q = (request.args.get("q") or "").strip()
        if _arg_bool("tokens_only", False):
            return jsonify(sorted(engine.query.search_tokens(q)))
        ranked = engine.query.search(q)
        out = []
        for doc, score in ranked:
            enriched = doc.to_dict()
            enriched["score"] = score
            out.append(enriched)
        return jsonify(out)

    @app.route("/api/query", methods=["POST"])
    def run_query():
        body = request.get_json(silent=True) or {}
        result = engine.query.apply(_query_state(body))
        return jsonify({
            "rows": _rows(result.rows),
            "relevance": result.relevance,
            "metrics": {
                "total": result.total,
                "after_boolean": result.after_boolean,
                "after_bundle": result.after_bundle,
            },
            "tag_frequency": result.tag_frequency[:200],
        })

    @app.route("/api/similar/<doc_id>")
    def similar(doc_id):
        query = engine.query
        result = query.rank_similar(
            doc_id,
            _similarity_options(query),
            min_shared=_arg_int("min_shared", 0),
            limit=_arg_int("limit"),
        )
        return jsonify({
            "reference": result.reference_id,
            "candidates": result.candidates,
            "rows": [dict(r.document.to_dict(), similarity=r.score) for r in result.rows],
            "top_tags": result.top_tags,
        })

    @app.route("/api/similarity/<id_a>/<id_b>")
    def similarity(id_a, id_b):
        query = engine.query
        opts = _similarity_options(query)
        a, b = query.corpus.get(id_a), query.corpus.get(id_b)
        if a is None or b is None:
            raise UnknownDocumentError(id_a if a is None else id_b)
        return jsonify({
            "tag": query.tag_similarity(a, b, opts.tag_mode, opts.weight_tags, opts.idf_multiplier),
            "text": query.text_similarity_by_id(id_a, id_b, opts.text_mode, opts.ngram_min, opts.ngram_max),
            "combined": query.combined_similarity(id_a, id_b, opts),
        })

    @app.route("/api/text-index", methods=["POST"])
    def text_index():
        ti = engine.ensure_text_index(rebuild=_arg_bool("rebuild", False))
        return jsonify({"built": ti.built, "docs": ti.n, "vocab_size": ti.vocab_size})

    @app.route("/api/augment", methods=["POST"])
    def augment():
        body = request.get_json(silent=True) or {}
        keys = ("ngram_min", "ngram_max", "min_score", "min_evidence", "max_add")
        report = engine.augment_probable_tags(**{k: body[k] for k in keys if k in body})
        return jsonify({
            "added_total": report.added_total,
            "documents_changed": report.documents_changed,
            "added": report.added,
        })

    @app.route("/api/select/<doc_id>", methods=["POST"])
    def select(doc_id):
        engine.request_detail(doc_id)
        return jsonify({"selected": doc_id})

    @app.route("/api/tags/suggest")
    def tags_suggest():
        freq = tag_frequency(engine.query.corpus.documents)
        return jsonify(suggest_tags(freq, request.args.get("prefix", ""), _arg_int("limit", 200)))

    @app.route("/api/stats")
    def stats():
        return jsonify(overview_stats(engine.query.corpus))

    return app


if __name__ == "__main__":
    configure_logging()
    create_app().run(host="0.0.0.0", port=PORT)
