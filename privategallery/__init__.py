import logging

from flask import Flask

from . import config
from .api import api
from .service import GalleryService

logger = logging.getLogger(__name__)

__all__ = ['create_app', 'GalleryService']


def create_app(overrides=None):
    """Builds the Flask app; ``overrides`` replaces config values (tests use this)."""
    app = Flask(__name__)
    app.config.update(config.app_defaults())
    if overrides:
        app.config.update(overrides)

    app.extensions['gallery'] = GalleryService(app.config['DATA_DIR'], app.config['UPLOAD_DIR'],
                                               app.config.get('PUBLIC_URL', ''))
    app.register_blueprint(api)
    logger.info("Gallery data in %s, uploads in %s", app.config['DATA_DIR'], app.config['UPLOAD_DIR'])
    return app
