from flask import Flask, request, jsonify, send_from_directory
from flask_cors import CORS
from sqlalchemy.exc import SQLAlchemyError
import os
from dotenv import load_dotenv
from .db import engine, init_db, check_connection, describe_database

load_dotenv()


def create_app(config=None):
    app = Flask(__name__)

    # ============================================
    # CONFIG
    # ============================================
    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")
    app.config["UPLOAD_FOLDER"] = os.getenv("UPLOAD_FOLDER", "uploads")
    app.config["MAX_CONTENT_LENGTH"] = int(os.getenv("MAX_CONTENT_LENGTH_MB", 16)) * 1024 * 1024
    app.config["TOKEN_EXPIRY_DAYS"] = int(os.getenv("TOKEN_EXPIRY_DAYS", 7))
    app.config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", "INFO").upper()
    if config:
        app.config.update(config)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    # ============================================
    # CORS
    # ============================================
    CORS(
        app,
        resources={r"/*": {"origins": "*"}},
        supports_credentials=False,
    )

    # ============================================
    # PREFLIGHT HANDLER
    # ============================================
    @app.before_request
    def handle_preflight():
        if request.method == "OPTIONS":
            resp = jsonify({"status": "ok"})
            resp.headers["Access-Control-Allow-Origin"] = "*"
            resp.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,PATCH,DELETE,OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "*"
            return resp, 200

    # ============================================
    # AFTER-REQUEST HEADERS
    # ============================================
    @app.after_request
    def add_cors_headers(resp):
        resp.headers["Access-Control-Allow-Origin"] = "*"
        resp.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,PATCH,DELETE,OPTIONS"
        resp.headers["Access-Control-Allow-Headers"] = "*"
        return resp

    # ============================================
    # BLUEPRINTS
    # ============================================
    from .routes import (
        assignment_routes, quotation_routes, employee_routes,
        machine_routes, material_routes, user_routes
    )

    app.register_blueprint(assignment_routes.assignment_bp, url_prefix="/api/jobs")
    app.register_blueprint(quotation_routes.quotation_bp, url_prefix="/api/quotation")
    app.register_blueprint(employee_routes.employee_bp, url_prefix="/api/employee")
    app.register_blueprint(machine_routes.machine_bp, url_prefix="/api/machine")
    app.register_blueprint(material_routes.material_bp, url_prefix="/api/material")
    app.register_blueprint(user_routes.user_bp, url_prefix="/api/user")

    # ============================================
    # SERVICE ROUTES
    # ============================================
    @app.route("/", methods=["GET"])
    def index():
        return jsonify({"success": True, "message": "API WORKING"}), 200

    @app.route("/health", methods=["GET"])
    def health_check():
        return jsonify({"status": "ok"}), 200

    @app.route("/test-db", methods=["GET"])
    def test_db():
        try:
            solution = check_connection()
            return jsonify({
                "success": True,
                "message": "Database connected!",
                "result": {"solution": solution}
            }), 200
        except SQLAlchemyError as e:
            app.logger.error(f"❌ Database connection failed: {e}")
            return jsonify({"success": False, "message": "Database connection failed", "error": str(e)}), 500

    @app.route("/images/<path:filename>", methods=["GET"])
    def serve_image(filename):
        return send_from_directory(os.path.abspath(app.config["UPLOAD_FOLDER"]), filename)

    # ============================================
    # JSON ERRORS
    # ============================================
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"success": False, "message": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"success": False, "message": "Method not allowed"}), 405

    @app.errorhandler(413)
    def file_too_large(e):
        return jsonify({"success": False, "message": "Uploaded file is too large"}), 413

    # Create missing tables (safe)
    init_db()

    return app


# ============================================
# STANDALONE LAUNCH
# ============================================
if __name__ == "__main__":
    app = create_app()

    print("=" * 60)
    print(f"🔧 DATABASE: {describe_database()}")
    print("=" * 60)

    # List tables
    from sqlalchemy import inspect
    inspector = inspect(engine)
    tables = inspector.get_table_names()
    print(f"\n📋 {len(tables)} tables detected:")
    for t in tables:
        print(f"   ✓ {t}")

    print("\n✅ Database initialised successfully!\n")
    print("=" * 60)

    port = int(os.getenv("PORT", 4000))
    app.run(debug=True, host="0.0.0.0", port=port, threaded=True)
