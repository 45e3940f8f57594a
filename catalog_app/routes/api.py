# catalog_app/routes/api.py

"""
Public catalog lookup API
"""

import time

from flask import current_app, jsonify, request
from sqlalchemy.exc import NoResultFound

from catalog_app.services import CatalogService
from config.monitoring import SyncMonitoring


def register_api_routes(app):
    """Register API routes"""

    @app.route("/api/catalog/<code>", methods=["GET"])
    def api_catalog_lookup(code):
        """
        Look up an active product by code.
        Optional ``jurisdiction`` query parameter narrows the search.
        """
        jurisdiction = request.args.get("jurisdiction") or None
        start_time = time.perf_counter()
        try:
            entry = CatalogService().lookup_by_code(code, jurisdiction)
        except NoResultFound as exc:
            SyncMonitoring.record_request(
                endpoint="catalog_lookup", duration_seconds=time.perf_counter() - start_time, status="not_found"
            )
            return jsonify({"error": str(exc)}), 404

        SyncMonitoring.record_request(
            endpoint="catalog_lookup", duration_seconds=time.perf_counter() - start_time, status="success"
        )
        current_app.logger.debug(f"Catalog lookup for {code} matched {entry.jurisdiction}:{entry.code}")
        return jsonify(entry.to_dict())

    @app.route("/api/catalog", methods=["GET"])
    def api_catalog_list():
        """Paginated listing of a jurisdiction's active catalog."""
        jurisdiction = (request.args.get("jurisdiction") or "").strip()
        if not jurisdiction:
            return jsonify({"error": "jurisdiction is required"}), 400

        result = CatalogService().list_entries(
            jurisdiction,
            category=request.args.get("category") or None,
            page=request.args.get("page", 1),
            page_size=request.args.get("page_size") or request.args.get("per_page"),
        )
        return jsonify(
            {
                "items": [entry.to_dict() for entry in result.items],
                "total": result.total,
                "page": result.page,
                "page_size": result.page_size,
                "total_pages": result.total_pages,
            }
        )
