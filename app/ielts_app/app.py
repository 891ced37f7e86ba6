"""
IELTS Practice - Flask Application
Application factory, JSON API routes and error handlers.
"""
import os
from typing import Optional

from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS

from .config import ProviderSettings, config
from .models import db
from .services.chat_client import ChatCompletionClient
from .services.errors import InvalidInput, PersistenceFailure, RecordNotFound
from .services.feedback_gateway import FeedbackGateway
from .services.practice_materials import (
    get_random_listening_test,
    get_random_reading_passage,
    get_random_speaking_questions,
    get_random_writing_task,
    public_view,
)
from .services.progress_service import ProgressService
from .services.submission_orchestrator import SubmissionOrchestrator
from .services.submission_store import SubmissionStore
from .utils import get_current_user_id, get_json_payload, login_required

api = Blueprint('ielts_api', __name__)


def get_orchestrator() -> SubmissionOrchestrator:
    return current_app.extensions['ielts_orchestrator']


def get_progress_service() -> ProgressService:
    return current_app.extensions['ielts_progress']


def create_app(
    config_name: Optional[str] = None,
    provider_client: Optional[ChatCompletionClient] = None,
    store: Optional[SubmissionStore] = None,
) -> Flask:
    """Build the Flask app and wire the scoring services together."""
    app = Flask(__name__)
    app.config.from_object(config[config_name or os.getenv('FLASK_ENV', 'development')])

    # Initialize extensions
    db.init_app(app)
    CORS(app, resources={r"/api/*": {"origins": app.config['CORS_ALLOWED_ORIGINS']}})

    settings = ProviderSettings.from_config(app.config)
    client = provider_client or ChatCompletionClient(settings)
    store = store or SubmissionStore(db)
    app.extensions['ielts_orchestrator'] = SubmissionOrchestrator(
        FeedbackGateway(client, settings),
        store,
        settings,
    )
    app.extensions['ielts_progress'] = ProgressService(store)

    app.register_blueprint(api)
    return app


def init_database(app: Flask) -> None:
    """Create all tables."""
    with app.app_context():
        db.create_all()
        app.logger.info("[DATABASE] Initialized successfully")


# ============================================================================
# TEST SESSIONS & SUBMISSIONS
# ============================================================================

@api.route('/health')
def health():
    return jsonify({'status': 'ok'})


@api.route('/api/sessions', methods=['POST'])
def create_test_session():
    """Start a practice test of the given type."""
    payload = get_json_payload()
    session_info = get_orchestrator().create_test_session(
        str(payload.get('test_type') or ''),
        user_id=get_current_user_id(),
    )
    return jsonify(session_info), 201


@api.route('/api/writing/submit', methods=['POST'])
def submit_writing_essay():
    """Score an essay; always returns a band score, degrading to generic feedback."""
    payload = get_json_payload()
    report = get_orchestrator().submit_writing(payload, user_id=get_current_user_id())
    return jsonify(report.to_dict()), 201


@api.route('/api/speaking/submit', methods=['POST'])
def submit_speaking_recording():
    """Score a speaking transcript."""
    payload = get_json_payload()
    report = get_orchestrator().submit_speaking(payload, user_id=get_current_user_id())
    return jsonify(report.to_dict()), 201


def _submit_objective(skill: str):
    payload = get_json_payload()
    report = get_orchestrator().submit_objective(
        skill,
        payload.get('answers'),
        payload.get('correct_answers'),
        payload.get('total_questions'),
        session_id=payload.get('session_id'),
        material_id=payload.get('material_id') or payload.get('passage_id') or payload.get('test_id'),
        time_taken=payload.get('time_taken'),
        user_id=get_current_user_id(),
    )
    return jsonify(report.to_dict()), 201


@api.route('/api/reading/submit', methods=['POST'])
def submit_reading_response():
    return _submit_objective('reading')


@api.route('/api/listening/submit', methods=['POST'])
def submit_listening_response():
    return _submit_objective('listening')


@api.route('/api/<kind>/<int:record_id>', methods=['GET'])
def get_submission(kind, record_id):
    """Return a stored score report."""
    report = get_orchestrator().get_report(kind, record_id)
    return jsonify(report.to_dict())


@api.route('/api/<kind>/<int:record_id>/refresh-feedback', methods=['POST'])
def refresh_submission_feedback(kind, record_id):
    """Retry provider feedback for a submission that was scored with fallback content."""
    report = get_orchestrator().refresh_feedback(kind, record_id)
    return jsonify(report.to_dict())


# ============================================================================
# PRACTICE MATERIALS
# ============================================================================

@api.route('/api/materials/<kind>', methods=['GET'])
def random_material(kind):
    """Pick a random practice item; answer keys are never included."""
    if kind == 'writing':
        material = get_random_writing_task(request.args.get('task_type', 'task2'))
    elif kind == 'speaking':
        try:
            part = int(request.args.get('part', 1))
        except ValueError:
            raise InvalidInput('part must be 1, 2 or 3') from None
        material = get_random_speaking_questions(part)
    elif kind == 'reading':
        material = get_random_reading_passage()
    elif kind == 'listening':
        material = get_random_listening_test()
    else:
        raise RecordNotFound(f'No materials for {kind}')
    return jsonify(public_view(material))


# ============================================================================
# PROGRESS
# ============================================================================

@api.route('/api/progress', methods=['GET'])
@login_required
def get_progress():
    return jsonify(get_progress_service().get_progress(get_current_user_id()))


@api.route('/api/progress/test-completed', methods=['POST'])
@login_required
def record_test_completed():
    profile = get_progress_service().increment_test_completion(get_current_user_id())
    return jsonify(profile)


@api.route('/api/progress/study-time', methods=['POST'])
@login_required
def record_study_time():
    payload = get_json_payload()
    if 'minutes' not in payload:
        return jsonify({'error': 'Missing minutes'}), 400
    profile = get_progress_service().add_study_time(get_current_user_id(), payload['minutes'])
    return jsonify(profile)


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@api.app_errorhandler(InvalidInput)
def invalid_input(error):
    return jsonify({'error': str(error)}), 400


@api.app_errorhandler(RecordNotFound)
def record_not_found(error):
    return jsonify({'error': str(error)}), 404


@api.app_errorhandler(PersistenceFailure)
def persistence_failure(error):
    current_app.logger.error("Submission could not be stored: %s", error)
    return jsonify({'error': 'Submission could not be saved. Please try again.'}), 500


@api.app_errorhandler(404)
def not_found(error):
    return jsonify({'error': 'Not found'}), 404


@api.app_errorhandler(500)
def internal_error(error):
    db.session.rollback()
    return jsonify({'error': 'Internal server error'}), 500


# ============================================================================
# INITIALIZATION
# ============================================================================

if __name__ == '__main__':
    application = create_app()
    init_database(application)
    application.run(host='0.0.0.0', port=int(os.getenv('PORT', 1111)), debug=True)
