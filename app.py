import os
import logging
import argparse
import traceback
from flask import Flask, jsonify, request
from flask_migrate import Migrate
from werkzeug.exceptions import HTTPException

# Import db from models
from models import db
# Import database migration function
from db_migrations import check_and_update_database
from errors import GradebookError

# Configure logging level from environment variable
def configure_logging():
    """Configure logging based on environment settings"""
    log_level = os.environ.get('LOG_LEVEL', 'WARNING').upper()

    # Map string levels to logging constants
    level_mapping = {
        'DEBUG': logging.DEBUG,
        'INFO': logging.INFO,
        'WARNING': logging.WARNING,
        'ERROR': logging.ERROR,
        'CRITICAL': logging.CRITICAL
    }

    actual_level = level_mapping.get(log_level, logging.WARNING)

    # An empty LOG_FILE logs to stderr
    log_file = os.environ.get('LOG_FILE', 'app.log') or None
    logging.basicConfig(
        filename=log_file,
        level=actual_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    return actual_level

def create_app(test_config=None):
    app = Flask(__name__)

    # Get the absolute path to the current directory
    base_dir = os.path.abspath(os.path.dirname(__file__))
    default_db = f'sqlite:///{os.path.join(base_dir, "instance", "gradebook.db")}'

    # Configuration
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev_key_for_local_use')
    app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', default_db)
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    if test_config:
        app.config.update(test_config)

    # Ensure instance folder exists for the default SQLite file
    if app.config['SQLALCHEMY_DATABASE_URI'] == default_db:
        os.makedirs(os.path.join(base_dir, 'instance'), exist_ok=True)

    # Configure logging
    log_level = configure_logging()

    # Log the current configuration
    if log_level <= logging.INFO:
        logging.info(f"Application started with log level: {logging.getLevelName(log_level)}")

    # Initialize extensions with app
    db.init_app(app)
    Migrate(app, db)

    # Register blueprints
    from routes.assessment_routes import assessment_bp
    from routes.outcome_routes import outcome_bp
    from routes.report_routes import report_bp
    from routes.student_routes import student_bp
    from routes.utility_routes import utility_bp

    app.register_blueprint(assessment_bp)
    app.register_blueprint(outcome_bp)
    app.register_blueprint(report_bp)
    app.register_blueprint(student_bp)
    app.register_blueprint(utility_bp)

    # Create tables if they don't exist
    with app.app_context():
        db.create_all()
        # Run database migrations to update schema for existing installations
        check_and_update_database(app)

    # Error handlers
    @app.errorhandler(GradebookError)
    def handle_gradebook_error(e):
        if e.status_code >= 500:
            logging.error(f"{request.method} {request.path} failed: {e.message}")
        else:
            logging.warning(f"{request.method} {request.path} rejected: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'success': False, 'error': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_uncaught_exception(e):
        # Get detailed error information
        error_traceback = traceback.format_exc()
        error_message = str(e)

        # Log the error
        logging.error(f"Uncaught exception: {error_message}\n{error_traceback}")
        db.session.rollback()
        return jsonify({'success': False, 'error': 'Internal server error'}), 500

    return app

if __name__ == '__main__':
    # Parse command line arguments
    parser = argparse.ArgumentParser(description='Gradebook outcome service')
    parser.add_argument('port', nargs='?', type=int, default=5000, help='Port to run the application on')
    parser.add_argument('--host', default='127.0.0.1', help='Interface to bind')
    parser.add_argument('--debug', action='store_true', help='Run with the Flask debugger and reloader')
    args = parser.parse_args()

    app = create_app()

    # Print the local URL
    print("=" * 70)
    print(f"Server started! API available at: http://{args.host}:{args.port}")
    print("=" * 70)

    # Run the application
    app.run(host=args.host, port=args.port, debug=args.debug)
