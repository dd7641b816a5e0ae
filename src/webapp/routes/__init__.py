from flask import Flask

from webapp.routes.analysis import bp as analysis_bp
from webapp.routes.records import bp as records_bp


def register_blueprints(app: Flask) -> None:
    """Attach all blueprints to the Flask app."""
    app.register_blueprint(analysis_bp)
    app.register_blueprint(records_bp)
