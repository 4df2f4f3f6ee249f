#!/usr/bin/env python3
"""
Consultation Messenger Application Entry Point
Uses application factory pattern for better modularity and testing
"""

import os
import sys
import argparse
import logging
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

# Import application factory
from app_factory import create_app
from utils.environment import EnvironmentConfig

logger = logging.getLogger(__name__)

def parse_arguments():
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description='Run the translated doctor-patient consultation messenger'
    )
    parser.add_argument(
        '--port',
        type=int,
        default=5000,
        help='Port to run the app on (default: 5000)'
    )
    parser.add_argument(
        '--host',
        type=str,
        default='0.0.0.0',
        help='Host to bind to (default: 0.0.0.0)'
    )
    parser.add_argument(
        '--config',
        type=str,
        default='default',
        choices=['default', 'production', 'development'],
        help='Configuration environment (default: default)'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug mode'
    )

    return parser.parse_args()

def check_environment():
    """Log configuration status; a missing API key is not fatal"""
    env = EnvironmentConfig()
    is_valid, missing_vars = env.validate_environment()

    if not is_valid:
        logger.warning(f"Missing environment variables: {', '.join(missing_vars)}")
        logger.warning("Messages will be delivered untranslated until GROQ_API_KEY is set")
    else:
        # Log API key status (without revealing the key)
        logger.info(f'GROQ_API_KEY found - length: {len(env.groq_api_key)}')

    logger.debug(env.get_environment_summary())

    return is_valid

def main():
    """Main application entry point"""
    try:
        args = parse_arguments()

        debug = args.debug or EnvironmentConfig().is_debug_mode()
        config_name = 'development' if debug else args.config
        app = create_app(config_name)

        if debug:
            app.config['DEBUG'] = True

        check_environment()

        # Get port from environment variable (for Heroku) or use argument
        port = int(os.environ.get('PORT', args.port))

        logger.info(f'Starting Consultation Messenger on {args.host}:{port}')
        logger.info(f'Configuration: {config_name}')
        logger.info(f'Debug mode: {app.config.get("DEBUG", False)}')

        # Log registered routes for debugging
        logger.debug("Registered URL Rules:")
        for rule in app.url_map.iter_rules():
            logger.debug(f"Route: {rule}, Endpoint: {rule.endpoint}")

        # Threaded so server-sent event streams do not block other requests
        app.run(
            host=args.host,
            port=port,
            debug=app.config.get('DEBUG', False),
            threaded=True
        )

    except KeyboardInterrupt:
        logger.info("Application stopped by user")
    except Exception as e:
        logger.error(f"Failed to start application: {e}", exc_info=True)
        sys.exit(1)

if __name__ == '__main__':
    main()
