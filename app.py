"""
Application Bootstrap - Anime Pipeline Console

Creates the Flask/SocketIO application, registers the tracking API, and starts
the operation tracking service that follows the pipeline backend's long-running
operations.
"""

import atexit
import logging

from flask import Flask, jsonify, request  # type: ignore
from flask_socketio import SocketIO  # type: ignore

from config.config import Config
from utils.logger import setup_logger

from api.tracking_api import tracking_api_bp

logger = logging.getLogger("AnimeConsole")


def create_app(config_class=Config, tracking_service=None, start_services=True):
    """Application factory pattern"""
    app = Flask(__name__)
    app.config.from_object(config_class)

    # Setup logging
    global logger
    logger = setup_logger(
        "AnimeConsole",
        app.config.get('LOG_FILE', 'anime_console.log'),
        level=app.config.get('LOG_LEVEL', 'INFO'),
    )
    logger.info("Starting Anime Pipeline Console")

    # Initialize SocketIO with CORS support
    socketio = SocketIO(
        app,
        async_mode=app.config.get('SOCKETIO_ASYNC_MODE', 'threading'),
        cors_allowed_origins=app.config.get('CORS_ALLOWED_ORIGINS'),
        logger=app.config.get('SOCKETIO_LOGGER', False),
        engineio_logger=app.config.get('ENGINEIO_LOGGER', False)
    )

    # Register blueprints
    app.register_blueprint(tracking_api_bp, url_prefix='/api/tracking')

    from services.service_manager import service_manager

    if tracking_service is not None:
        service_manager.register_service('tracking', tracking_service)
    tracking = service_manager.get_tracking_service()
    tracking.event_emitter.attach_socketio(socketio)

    if start_services:
        try:
            if tracking.start():
                atexit.register(service_manager.shutdown)
        except Exception as e:
            logger.error("Error starting operation tracking: %s", e)

    register_socketio_handlers(socketio)
    register_error_handlers(app)

    @app.route('/health')
    def health_check():
        """Health check endpoint."""
        return jsonify({
            'status': 'healthy',
            'service': 'AnimeConsole',
            'tracking': tracking.running,
        })

    logger.info("Anime Pipeline Console initialized successfully")
    return app, socketio


def register_socketio_handlers(socketio):
    @socketio.on('connect')
    def handle_connect():
        logging.getLogger("AnimeConsole").info("SocketIO client connected: %s", request.sid)
        socketio.emit('connection_status', {'status': 'connected', 'message': 'Connected to Anime Pipeline Console'})

    @socketio.on('disconnect')
    def handle_disconnect(*_args):
        logging.getLogger("AnimeConsole").info("SocketIO client disconnected: %s", request.sid)

    @socketio.on('ping')
    def handle_ping():
        socketio.emit('pong', {'message': 'Server is alive'})


def register_error_handlers(app):
    """Register error handlers"""

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'success': False, 'error': 'Resource not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'success': False, 'error': 'Method not allowed'}), 405

    @app.errorhandler(500)
    def internal_error(error):
        logger.error("Internal server error: %s", error)
        return jsonify({'success': False, 'error': 'Internal server error'}), 500


if __name__ == '__main__':
    app, socketio = create_app()
    logger.info("Anime Pipeline Console starting...")
    socketio.run(app, debug=False, host='0.0.0.0', port=5000, allow_unsafe_werkzeug=True)
