"""
HTTP Microservice
=================
Flask-based HTTP API serving shifts from the indexed shift books.

Endpoints:
    GET    /shift/<identifier>        → PDF with the shift's pages
    GET    /shift/<identifier>/json   → Parsed shift body
    GET    /index                     → Shifts reachable on the date
    GET    /stats                     → Store statistics
    POST   /api/index                 → Index a PDF (JSON body with file_path)
    GET    /api/health                → Health check

Every GET accepts an optional `date=dd-mm-yyyy` query parameter; without
it the shared resolution for today is used.
"""

from __future__ import annotations

import io
import logging
import os
from typing import Optional

import fitz  # PyMuPDF
from flask import Flask, jsonify, request, send_file
from flask_cors import CORS

from . import __version__
from .errors import DocumentOpenError, PrefixMismatch, ShiftNotFound
from .indexer import IndexerConfig, ShiftIndexer
from .models import parse_date
from .resolver import TimetableResolver
from .statistics import StatisticsEngine
from .store import DEFAULT_COLLECTION_DIR, TimetableStore

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)


def create_app(config: dict = None) -> Flask:
    """Create and configure the Flask app."""
    if config:
        app.config.update(config)

    app.config.setdefault("COLLECTION_DIR", str(DEFAULT_COLLECTION_DIR))

    store = TimetableStore(app.config["COLLECTION_DIR"])
    store.init_storage()
    app.extensions["shiftbook_store"] = store
    app.extensions["shiftbook_resolver"] = TimetableResolver(store)

    return app


def _store() -> TimetableStore:
    return app.extensions["shiftbook_store"]


def _resolver() -> TimetableResolver:
    return app.extensions["shiftbook_resolver"]


class BadDate(ValueError):
    pass


def _lookup_date():
    value: Optional[str] = request.args.get("date")
    if not value:
        return None
    try:
        return parse_date(value)
    except ValueError:
        raise BadDate(value) from None


def assemble_pages(pdf_path: str, pages: list[int]) -> bytes:
    """Copy the given 1-based pages of a PDF into a new document."""
    if not pdf_path or not os.path.exists(pdf_path):
        raise FileNotFoundError(f"Source PDF not found: {pdf_path}")
    with fitz.open(pdf_path) as source, fitz.open() as output:
        for page_number in pages:
            output.insert_pdf(
                source, from_page=page_number - 1, to_page=page_number - 1
            )
        return output.tobytes()


def _lookup_error(e: Exception):
    """Map a lookup failure to a response."""
    if isinstance(e, BadDate):
        return jsonify({"error": f"Invalid date {e}, expected dd-mm-yyyy"}), 400
    if isinstance(e, ShiftNotFound):
        return jsonify({"error": e.message}), 404
    if isinstance(e, PrefixMismatch):
        return jsonify({"error": e.message}), 409
    logger.exception("Request failed")
    return jsonify({"error": "Internal error"}), 500


# ─── Health Check ─────────────────────────────────────────────────────────────


@app.route("/api/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "shiftbook",
        "version": __version__,
        "timetables": len(_store().collections()),
    })


# ─── Shifts ───────────────────────────────────────────────────────────────────


@app.route("/shift/<identifier>", methods=["GET"])
def get_shift_pdf(identifier: str):
    """Return the pages of a shift as a PDF."""
    try:
        location = _resolver().lookup(identifier, _lookup_date())
        pdf_bytes = assemble_pages(
            location.source_path, location.shift_data.pages
        )
    except Exception as e:
        return _lookup_error(e)

    return send_file(
        io.BytesIO(pdf_bytes),
        mimetype="application/pdf",
        download_name=f"{location.identifier}.pdf",
    )


@app.route("/shift/<identifier>/json", methods=["GET"])
def get_shift_json(identifier: str):
    """Return the parsed shift body."""
    try:
        location = _resolver().lookup(identifier, _lookup_date())
        shift = _resolver().load_shift(location)
    except Exception as e:
        return _lookup_error(e)

    return jsonify(shift.model_dump())


@app.route("/index", methods=["GET"])
def get_index():
    """List every shift reachable on the date."""
    try:
        shifts = _resolver().valid_shifts(_lookup_date())
    except Exception as e:
        return _lookup_error(e)

    return jsonify([s.model_dump() for s in shifts])


@app.route("/stats", methods=["GET"])
def get_stats():
    try:
        report = StatisticsEngine(_store(), _resolver()).build(_lookup_date())
    except Exception as e:
        return _lookup_error(e)

    return jsonify(report.model_dump())


# ─── Indexing ─────────────────────────────────────────────────────────────────


@app.route("/api/index", methods=["POST"])
def index_pdf():
    """Index a PDF synchronously. Body: {"file_path": "..."}"""
    data = request.get_json(silent=True) or {}
    pdf_path = data.get("file_path")
    if not pdf_path or not os.path.exists(pdf_path):
        return jsonify({"error": f"File not found: {pdf_path}"}), 404

    config = IndexerConfig(
        collection_dir=app.config["COLLECTION_DIR"],
        flush_trailing_row=bool(data.get("flush_trailing_row", False)),
    )

    try:
        result = ShiftIndexer(config, store=_store()).index(pdf_path)
    except DocumentOpenError as e:
        logger.error(str(e))
        return jsonify({"error": "PDF could not be opened"}), 422
    except Exception:
        logger.exception(f"Indexing failed for {pdf_path}")
        return jsonify({"error": "Indexing failed"}), 500

    return jsonify(result.model_dump()), 200


def run_server(
    host: str = "0.0.0.0",
    port: int = 5000,
    debug: bool = False,
    collection_dir: Optional[str] = None,
):
    """Start the microservice server."""
    create_app({"COLLECTION_DIR": collection_dir} if collection_dir else None)
    app.run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    run_server(debug=True)
