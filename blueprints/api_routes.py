from flask import Blueprint, Response, request, jsonify, current_app, g, send_from_directory, \
    stream_with_context, url_for
import os
import uuid
import logging
from datetime import timedelta

from werkzeug.utils import secure_filename

from utils.auth import login_required, require_participant, GUEST_COOKIE
from utils.database import (
    upsert_profile, get_profile, create_conversation, get_conversations_for_user,
    delete_conversation, join_conversation, create_guest_session,
    add_text_message, add_audio_message, get_messages, search_messages,
    store_summary, get_latest_summary, get_summaries,
)
from utils.environment import EnvironmentConfig
from utils.errors import AuthorizationError, NotFoundError, ValidationError
from utils.realtime import stream_subscription
from utils.summary import generate_medical_summary_with_retry, format_summary_text
from utils.translation import translate_text_with_retry, LANGUAGE_NAMES

logger = logging.getLogger(__name__)

api_bp = Blueprint('api', __name__)


def _broker():
    return current_app.extensions['message_broker']


def _json_body():
    return request.get_json(silent=True) or {}


def _caller_languages(conversation, role):
    """(language the caller writes in, language of the other side)"""
    if role == 'doctor':
        return conversation['doctor_language'], conversation['patient_language']
    return conversation['patient_language'], conversation['doctor_language']


@api_bp.route('/languages', methods=['GET'])
def list_languages():
    """Supported language codes and names"""
    return jsonify({
        'status': 'success',
        'languages': [{'code': code, 'name': name} for code, name in LANGUAGE_NAMES.items()]
    })


@api_bp.route('/profile', methods=['GET'])
@login_required
def read_profile():
    if not g.identity.user_id:
        raise AuthorizationError('Guests do not have a profile')
    profile = get_profile(g.identity.user_id)
    if profile is None:
        raise NotFoundError('Profile not found. Please complete your profile.')
    return jsonify({'status': 'success', 'profile': profile})


@api_bp.route('/profile', methods=['PUT'])
@login_required
def update_profile():
    """Create or update the caller's profile"""
    if not g.identity.user_id:
        raise AuthorizationError('Guests do not have a profile')

    data = _json_body()
    existing = get_profile(g.identity.user_id)
    email = data.get('email') or (existing or {}).get('email')
    if not email:
        raise ValidationError('Email is required')

    language = data.get('language')
    if language is not None and language not in LANGUAGE_NAMES:
        raise ValidationError(f'Unsupported language: {language}')

    profile = upsert_profile(
        g.identity.user_id,
        email=email,
        full_name=data.get('full_name'),
        role=data.get('role'),
        language=language,
    )
    return jsonify({'status': 'success', 'profile': profile})


@api_bp.route('/conversations', methods=['POST'])
@login_required
def create_new_conversation():
    """Create a consultation; only doctors may do this"""
    identity = g.identity
    if identity.role != 'doctor':
        raise AuthorizationError(f'Only doctors can create conversations. Your role: {identity.role}')

    data = _json_body()
    patient_language = data.get('patient_language')
    if patient_language is not None and patient_language not in LANGUAGE_NAMES:
        raise ValidationError(f'Unsupported language: {patient_language}')

    conversation = create_conversation(
        identity.user_id,
        title=(data.get('title') or '').strip() or None,
        doctor_language=identity.language or 'en',
        patient_language=patient_language,
    )
    return jsonify({
        'status': 'success',
        'message': 'Conversation created',
        'conversation_id': conversation['id'],
        'conversation': conversation
    }), 201


@api_bp.route('/conversations', methods=['GET'])
@login_required
def list_conversations():
    """Get the conversations the caller participates in"""
    conversations = get_conversations_for_user(
        user_id=g.identity.user_id, guest_session_id=g.identity.guest_session_id
    )
    return jsonify({
        'status': 'success',
        'conversations': conversations
    })


@api_bp.route('/conversations/<conversation_id>', methods=['GET'])
@login_required
def get_conversation_by_id(conversation_id):
    conversation, role = require_participant(conversation_id, g.identity)
    return jsonify({
        'status': 'success',
        'conversation': conversation,
        'user_role': role
    })


@api_bp.route('/conversations/<conversation_id>', methods=['DELETE'])
@login_required
def delete_conversation_by_id(conversation_id):
    """Delete a conversation; only its creator may do this"""
    if not delete_conversation(conversation_id, g.identity.user_id):
        raise NotFoundError(f'Conversation with ID {conversation_id} not found')
    return jsonify({
        'status': 'success',
        'message': f'Conversation {conversation_id} deleted successfully'
    })


@api_bp.route('/conversations/<conversation_id>/join', methods=['POST'])
@login_required
def join_conversation_by_id(conversation_id):
    """Join as the patient; joining again is reported as success"""
    identity = g.identity
    if not identity.user_id:
        require_participant(conversation_id, identity)
        return jsonify({'status': 'success', 'message': 'Already joined'})

    result = join_conversation(conversation_id, identity.user_id, language=identity.language)
    return jsonify({
        'status': 'success',
        'message': 'Joined conversation' if result['joined'] else 'Already joined',
        'role': result['role']
    })


@api_bp.route('/conversations/<conversation_id>/guest', methods=['POST'])
def join_as_guest(conversation_id):
    """Join without an account; the guest session lives in a cookie"""
    data = _json_body()
    language = data.get('language')
    if language is not None and language not in LANGUAGE_NAMES:
        raise ValidationError(f'Unsupported language: {language}')

    hours = current_app.config['GUEST_SESSION_HOURS']
    session = create_guest_session(conversation_id, data.get('guest_name'), language=language, hours=hours)

    response = jsonify({
        'status': 'success',
        'session_id': session['session_id'],
        'conversation_id': conversation_id,
        'expires_at': session['expires_at']
    })
    response.set_cookie(
        GUEST_COOKIE,
        session['session_id'],
        max_age=int(timedelta(hours=hours).total_seconds()),
        httponly=True,
        secure=not (current_app.debug or current_app.testing),
        samesite='Lax',
        path='/',
    )
    return response, 201


@api_bp.route('/conversations/<conversation_id>/messages', methods=['GET'])
@login_required
def list_messages(conversation_id):
    """Full ordered message history; the poll path of the client"""
    require_participant(conversation_id, g.identity)
    return jsonify({
        'status': 'success',
        'messages': get_messages(conversation_id)
    })


@api_bp.route('/conversations/<conversation_id>/messages', methods=['POST'])
@login_required
def send_message(conversation_id):
    """
    Translate, store and publish a text message.

    A failed translation never blocks sending: the message is stored with
    the original text in place of the translation.
    """
    identity = g.identity
    conversation, role = require_participant(conversation_id, identity)

    text = (_json_body().get('text') or '').strip()
    if not text:
        raise ValidationError('Message text is required')

    source_language, target_language = _caller_languages(conversation, role)
    result = translate_text_with_retry(
        text, source_language, target_language,
        max_retries=current_app.config['TRANSLATION_MAX_RETRIES'],
    )
    if result['error']:
        logger.warning(f"Storing untranslated message in {conversation_id}: {result['error']}")

    message = add_text_message(
        conversation_id, identity.sender_id, role,
        original_text=text, translated_text=result['translation'],
    )
    delivered = _broker().publish(conversation_id, message)
    logger.debug(f"Message {message['id']} pushed to {delivered} subscribers")

    return jsonify({
        'status': 'success',
        'message': message
    }), 201


def _allowed_audio(filename):
    extension = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
    return extension in current_app.config['ALLOWED_AUDIO_EXTENSIONS'], extension


@api_bp.route('/conversations/<conversation_id>/audio', methods=['POST'])
@login_required
def send_audio_message(conversation_id):
    """Store an uploaded recording and publish it as an audio message"""
    identity = g.identity
    _, role = require_participant(conversation_id, identity)

    audio_file = request.files.get('audio')
    if audio_file is None or not audio_file.filename:
        raise ValidationError('No audio file provided')

    allowed, extension = _allowed_audio(secure_filename(audio_file.filename))
    if not allowed:
        raise ValidationError(f'Unsupported audio format: {extension or "unknown"}')

    upload_folder = current_app.config['UPLOAD_FOLDER']
    os.makedirs(upload_folder, exist_ok=True)
    filename = f"{conversation_id}_{uuid.uuid4().hex}.{extension}"
    audio_file.save(os.path.join(upload_folder, filename))
    logger.info(f"Stored audio upload {filename}")

    message = add_audio_message(
        conversation_id, identity.sender_id, role,
        audio_url=url_for('api.get_audio', filename=filename),
    )
    _broker().publish(conversation_id, message)

    return jsonify({
        'status': 'success',
        'message': message
    }), 201


@api_bp.route('/audio/<filename>', methods=['GET'])
@login_required
def get_audio(filename):
    """Serve a stored recording to participants of its conversation"""
    filename = secure_filename(filename)
    conversation_id = filename.split('_', 1)[0]
    require_participant(conversation_id, g.identity)
    return send_from_directory(current_app.config['UPLOAD_FOLDER'], filename)


@api_bp.route('/conversations/<conversation_id>/stream', methods=['GET'])
@login_required
def stream_messages(conversation_id):
    """Server-sent events carrying every new message of the conversation"""
    require_participant(conversation_id, g.identity)

    subscription = _broker().subscribe(conversation_id)
    keepalive = current_app.config['STREAM_KEEPALIVE_SECONDS']
    resp = Response(
        stream_with_context(stream_subscription(subscription, keepalive)),
        mimetype='text/event-stream'
    )
    resp.headers['X-Accel-Buffering'] = 'no'
    resp.headers['Cache-Control'] = 'no-store'
    return resp


@api_bp.route('/conversations/<conversation_id>/summaries', methods=['POST'])
@login_required
def generate_summary(conversation_id):
    """Generate and store a medical summary of the whole transcript"""
    _, role = require_participant(conversation_id, g.identity)
    if role != 'doctor':
        raise AuthorizationError('Only the doctor can generate a summary')

    messages = get_messages(conversation_id)
    if not messages:
        raise ValidationError('There are no messages to summarize yet')

    logger.info(f"Generating summary for conversation {conversation_id} ({len(messages)} messages)")
    summary = generate_medical_summary_with_retry(
        messages, max_attempts=current_app.config['SUMMARY_MAX_ATTEMPTS']
    )
    stored = store_summary(conversation_id, summary)

    return jsonify({
        'status': 'success',
        'summary': stored
    }), 201


@api_bp.route('/conversations/<conversation_id>/summaries/latest', methods=['GET'])
@login_required
def latest_summary(conversation_id):
    require_participant(conversation_id, g.identity)
    summary = get_latest_summary(conversation_id)

    if request.args.get('format') == 'text':
        if summary is None:
            raise NotFoundError('No summary has been generated yet')
        return Response(format_summary_text(summary), mimetype='text/plain')

    return jsonify({
        'status': 'success',
        'summary': summary
    })


@api_bp.route('/conversations/<conversation_id>/summaries', methods=['GET'])
@login_required
def summary_history(conversation_id):
    require_participant(conversation_id, g.identity)
    return jsonify({
        'status': 'success',
        'summaries': get_summaries(conversation_id)
    })


@api_bp.route('/search', methods=['GET'])
@login_required
def search():
    """Search message text across the caller's conversations"""
    query = request.args.get('q', '').strip()
    conversation_id = request.args.get('conversation_id') or None
    if conversation_id:
        require_participant(conversation_id, g.identity)

    results = search_messages(
        query,
        user_id=g.identity.user_id,
        guest_session_id=g.identity.guest_session_id,
        conversation_id=conversation_id,
    )
    return jsonify({
        'status': 'success',
        'query': query,
        'results': results
    })


@api_bp.route('/diagnose', methods=['GET'])
def diagnose_api():
    """Report configuration status without revealing secrets"""
    env = EnvironmentConfig()
    is_valid, missing_vars = env.validate_environment()
    return jsonify({
        'status': 'success',
        'environment': {
            'GROQ_API_KEY': 'SET' if env.groq_api_key else 'NOT SET',
            'PORT': 'SET' if os.environ.get('PORT') else 'NOT SET',
        },
        'services': {
            'translation': 'configured' if is_valid else 'passthrough',
            'summary': 'configured' if is_valid else 'unavailable',
        },
        'missing': missing_vars
    })
