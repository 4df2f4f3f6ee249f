from flask import jsonify, request
from werkzeug.exceptions import HTTPException
import logging

from utils.errors import MessengerError

logger = logging.getLogger(__name__)

def register_error_handlers(app):
    """Register error handlers for the Flask application"""

    @app.errorhandler(MessengerError)
    def handle_messenger_error(e):
        if e.status_code >= 500:
            logger.error('%s: %s - Path: %s, Method: %s',
                         e.__class__.__name__, e.message, request.path, request.method)
        else:
            logger.warning('%s: %s - Path: %s, Method: %s',
                           e.__class__.__name__, e.message, request.path, request.method)
        return jsonify({
            'status': 'error',
            'message': e.message
        }), e.status_code

    @app.errorhandler(400)
    def handle_bad_request(e):
        logger.warning('400 error: %s - Path: %s, Method: %s',
                      e, request.path, request.method)
        return jsonify({
            'status': 'error',
            'message': 'Bad request. Please check your input.'
        }), 400

    @app.errorhandler(404)
    def handle_404(e):
        logger.warning('404 error: %s - Path: %s, Method: %s',
                      e, request.path, request.method)
        return jsonify({
            'status': 'error',
            'message': f'Not Found: The requested URL {request.path} was not found on the server.'
        }), 404

    @app.errorhandler(405)
    def handle_405(e):
        logger.warning('405 error: %s - Path: %s, Method: %s',
                      e, request.path, request.method)
        return jsonify({
            'status': 'error',
            'message': f'Method {request.method} is not allowed for {request.path}.'
        }), 405

    @app.errorhandler(413)
    def handle_too_large(e):
        logger.warning('413 error: %s - Path: %s', e, request.path)
        return jsonify({
            'status': 'error',
            'message': 'Uploaded file is too large.'
        }), 413

    @app.errorhandler(500)
    def handle_internal_error(e):
        logger.error('500 error: %s - Path: %s, Method: %s',
                    e, request.path, request.method, exc_info=True)
        return jsonify({
            'status': 'error',
            'message': 'Internal server error. Please try again later.'
        }), 500

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        logger.warning('%s error: %s - Path: %s, Method: %s',
                      e.code, e, request.path, request.method)
        return jsonify({
            'status': 'error',
            'message': e.description
        }), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        logger.error('Unexpected error: %s - Path: %s, Method: %s',
                    e, request.path, request.method, exc_info=True)
        return jsonify({
            'status': 'error',
            'message': 'An unexpected error occurred. Please try again later.'
        }), 500
