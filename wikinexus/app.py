"""
WikiNexus
A Flask application serving hierarchical wiki pages made of rich-content blocks.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Flask, jsonify

from wikinexus.api import api_bp, register_error_handlers
from wikinexus.core.config import load_config
from wikinexus.core.logging_config import setup_logging
from wikinexus.features.registry import FeatureManager
from wikinexus.features.standard import register_standard_features
from wikinexus.models import db
from wikinexus.storage import WikiRepository
from wikinexus.version_info import __version__ as VERSION

logger = logging.getLogger(__name__)


def create_app(config: Optional[Dict[str, Any]] = None) -> Flask:
    """
    Build the application. ``config`` overrides what ``load_config`` returns;
    pass ``testing=True`` to skip log file setup.
    """
    settings = load_config()
    if config:
        settings.update(config)

    if not settings.get('testing'):
        setup_logging(
            Path(settings['log_dir']),
            settings.get('debug', False),
            max_bytes=settings['log_max_bytes'],
            backup_count=settings['log_backup_count'],
        )

    app = Flask(__name__)
    app.config.update(
        SQLALCHEMY_DATABASE_URI=settings['database_uri'],
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        UPLOAD_FOLDER=str(settings['upload_folder']),
        MAX_CONTENT_LENGTH=settings['max_upload_size'],
        TESTING=bool(settings.get('testing')),
        DEBUG=bool(settings.get('debug')),
    )

    # Feature registry: standard block rendering features
    features = FeatureManager()
    register_standard_features(features)
    app.config['FEATURES'] = features

    db.init_app(app)
    app.extensions['wikinexus'] = WikiRepository(settings['upload_folder'], settings['max_upload_size'])

    app.register_blueprint(api_bp, url_prefix='/api')
    register_error_handlers(app)

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok', 'version': VERSION})

    with app.app_context():
        db.create_all()

    logger.info(f"WikiNexus v{VERSION} ready (database: {settings['database_uri']})")
    return app
