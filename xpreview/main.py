import os
from flask import Flask, jsonify
from config.config import config
from xpreview.database import init_db
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)


def create_app(config_name: str = None) -> Flask:
    """Application factory"""
    config_name = config_name or os.environ.get('FLASK_ENV', 'default')
    config_class = config.get(config_name, config['default'])

    app = Flask(__name__)
    app.config.from_object(config_class)

    init_db()

    from xpreview.routes import submissions, admin
    app.register_blueprint(submissions.bp, url_prefix='/api/submissions')
    app.register_blueprint(admin.bp, url_prefix='/api/admin')

    @app.route('/api/health', methods=['GET'])
    def health():
        return jsonify({'status': 'ok'}), 200

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Unhandled error: {str(error)}")
        return jsonify({'error': 'Internal server error'}), 500

    if not app.config.get('TESTING'):
        from xpreview.scheduler import start_scheduler
        app.scheduler = start_scheduler(admin.evaluation_queue, admin.deadline_monitor)

    logger.info(f"xpreview started with '{config_name}' configuration")
    return app
