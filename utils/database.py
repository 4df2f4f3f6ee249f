import secrets
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import or_

from models import (
    db, utcnow, ROLES, Profile, Conversation, ConversationParticipant,
    GuestSession, Message, Summary,
)
from utils.errors import AuthorizationError, NotFoundError, ValidationError
from utils.summary import SUMMARY_LIST_FIELDS

# Initialize logger
logger = logging.getLogger(__name__)

SEARCH_LIMIT = 50


def init_db():
    """Create any missing tables; requires an application context"""
    db.create_all()
    logger.info("Database initialized successfully")


# Profiles

def upsert_profile(user_id: str, email: str, full_name: Optional[str] = None,
                   role: Optional[str] = None, language: Optional[str] = None) -> Dict[str, Any]:
    """Create or update the profile of an identity-provider user"""
    if role is not None and role not in ROLES:
        raise ValidationError(f"Invalid role: {role}")

    profile = db.session.get(Profile, user_id)
    if profile is None:
        profile = Profile(id=user_id, email=email, role=role or 'patient', language=language or 'en')
        db.session.add(profile)
        logger.info(f"Created profile {user_id}")
    else:
        profile.email = email or profile.email
        if role:
            profile.role = role
        if language:
            profile.language = language
    if full_name is not None:
        profile.full_name = full_name

    db.session.commit()
    return profile.to_dict()


def get_profile(user_id: str) -> Optional[Dict[str, Any]]:
    profile = db.session.get(Profile, user_id)
    return profile.to_dict() if profile else None


# Conversations

def create_conversation(creator_id: str, title: Optional[str] = None,
                        doctor_language: str = 'en',
                        patient_language: Optional[str] = None) -> Dict[str, Any]:
    """
    Create a conversation and register its creator as the doctor participant.

    The patient language starts as the doctor's own language and is replaced
    when a patient joins.
    """
    conversation = Conversation(
        creator_id=creator_id,
        title=title or None,
        doctor_language=doctor_language,
        patient_language=patient_language or doctor_language,
    )
    db.session.add(conversation)
    db.session.flush()

    db.session.add(ConversationParticipant(
        conversation_id=conversation.id,
        user_id=creator_id,
        role='doctor',
    ))
    db.session.commit()

    logger.info(f"Created conversation {conversation.id} for {creator_id}")
    return conversation.to_dict(include_participants=True)


def _participant_filter(user_id=None, guest_session_id=None):
    if user_id:
        return ConversationParticipant.user_id == user_id
    if guest_session_id:
        return ConversationParticipant.guest_session_id == guest_session_id
    raise ValidationError("A user or guest session is required")


def get_conversations_for_user(user_id: Optional[str] = None,
                               guest_session_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Conversations the caller participates in, newest first"""
    conversation_ids = db.session.query(ConversationParticipant.conversation_id).filter(
        _participant_filter(user_id, guest_session_id)
    )
    conversations = (
        Conversation.query
        .filter(Conversation.id.in_(conversation_ids))
        .order_by(Conversation.created_at.desc())
        .all()
    )
    return [c.to_dict(include_participants=True) for c in conversations]


def get_conversation(conversation_id: str) -> Optional[Dict[str, Any]]:
    conversation = db.session.get(Conversation, conversation_id)
    if not conversation:
        return None
    return conversation.to_dict(include_participants=True)


def get_participant_role(conversation_id: str, user_id: Optional[str] = None,
                         guest_session_id: Optional[str] = None) -> Optional[str]:
    """Role of the caller in the conversation, or None when not a participant"""
    if not user_id and not guest_session_id:
        return None
    participant = ConversationParticipant.query.filter(
        ConversationParticipant.conversation_id == conversation_id,
        _participant_filter(user_id, guest_session_id),
    ).first()
    return participant.role if participant else None


def join_conversation(conversation_id: str, user_id: str,
                      language: Optional[str] = None) -> Dict[str, Any]:
    """
    Add an authenticated user to a conversation as the patient.

    Joining twice is not an error.

    Returns:
        dict: {'joined': bool, 'role': str}
    """
    conversation = db.session.get(Conversation, conversation_id)
    if not conversation:
        raise NotFoundError('Conversation not found')

    existing_role = get_participant_role(conversation_id, user_id=user_id)
    if existing_role:
        return {'joined': False, 'role': existing_role}

    db.session.add(ConversationParticipant(
        conversation_id=conversation_id,
        user_id=user_id,
        role='patient',
    ))
    if language:
        conversation.patient_language = language
    db.session.commit()

    logger.info(f"User {user_id} joined conversation {conversation_id}")
    return {'joined': True, 'role': 'patient'}


def create_guest_session(conversation_id: str, guest_name: str, language: Optional[str] = None,
                         hours: int = 24) -> Dict[str, Any]:
    """Create an expiring guest session and add the guest as the patient"""
    if not guest_name or not guest_name.strip():
        raise ValidationError('Guest name is required')

    conversation = db.session.get(Conversation, conversation_id)
    if not conversation:
        raise NotFoundError('Conversation not found')

    session = GuestSession(
        session_id=secrets.token_urlsafe(16),
        guest_name=guest_name.strip(),
        conversation_id=conversation_id,
        language=language,
        expires_at=utcnow() + timedelta(hours=hours),
    )
    db.session.add(session)
    db.session.add(ConversationParticipant(
        conversation_id=conversation_id,
        guest_session_id=session.session_id,
        role='patient',
    ))
    if language:
        conversation.patient_language = language
    db.session.commit()

    logger.info(f"Guest session created for conversation {conversation_id}")
    return {
        'session_id': session.session_id,
        'guest_name': session.guest_name,
        'conversation_id': conversation_id,
        'language': session.language,
        'expires_at': session.expires_at.isoformat(),
    }


def get_guest_session(session_id: str) -> Optional[Dict[str, Any]]:
    """Return the guest session if it exists and has not expired"""
    if not session_id:
        return None
    session = GuestSession.query.filter(
        GuestSession.session_id == session_id,
        GuestSession.expires_at > utcnow(),
    ).first()
    if not session:
        return None
    return {
        'session_id': session.session_id,
        'guest_name': session.guest_name,
        'conversation_id': session.conversation_id,
        'language': session.language,
        'expires_at': session.expires_at.isoformat(),
    }


def delete_conversation(conversation_id: str, requester_id: str) -> bool:
    """
    Delete a conversation with its participants, messages and summaries.

    Returns:
        bool: False when the conversation does not exist

    Raises:
        AuthorizationError: the requester did not create the conversation
    """
    conversation = db.session.get(Conversation, conversation_id)
    if not conversation:
        return False
    if conversation.creator_id != requester_id:
        raise AuthorizationError('Not authorized to delete this conversation')

    db.session.delete(conversation)
    db.session.commit()
    logger.info(f"Deleted conversation {conversation_id}")
    return True


# Messages

def add_text_message(conversation_id: str, sender_id: str, sender_role: str,
                     original_text: str, translated_text: Optional[str]) -> Dict[str, Any]:
    """Insert a text message and return the stored row"""
    message = Message(
        conversation_id=conversation_id,
        sender_id=sender_id,
        sender_role=sender_role,
        original_text=original_text,
        translated_text=translated_text,
    )
    db.session.add(message)
    db.session.commit()
    return message.to_dict()


def add_audio_message(conversation_id: str, sender_id: str, sender_role: str,
                      audio_url: str) -> Dict[str, Any]:
    """Insert an audio message and return the stored row"""
    message = Message(
        conversation_id=conversation_id,
        sender_id=sender_id,
        sender_role=sender_role,
        audio_url=audio_url,
    )
    db.session.add(message)
    db.session.commit()
    return message.to_dict()


def get_messages(conversation_id: str) -> List[Dict[str, Any]]:
    """Every message of a conversation, oldest first"""
    messages = (
        Message.query
        .filter_by(conversation_id=conversation_id)
        .order_by(Message.created_at.asc())
        .all()
    )
    return [m.to_dict() for m in messages]


def _escape_like(term: str) -> str:
    return term.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


def search_messages(query: str, user_id: Optional[str] = None,
                    guest_session_id: Optional[str] = None,
                    conversation_id: Optional[str] = None,
                    limit: int = SEARCH_LIMIT) -> List[Dict[str, Any]]:
    """
    Case-insensitive search over original and translated text.

    Only conversations the caller participates in are searched.
    """
    query = (query or '').strip()
    if not query:
        return []

    pattern = f"%{_escape_like(query)}%"
    conversation_ids = db.session.query(ConversationParticipant.conversation_id).filter(
        _participant_filter(user_id, guest_session_id)
    )

    results = (
        db.session.query(Message, Conversation)
        .join(Conversation, Message.conversation_id == Conversation.id)
        .filter(Message.conversation_id.in_(conversation_ids))
        .filter(or_(
            Message.original_text.ilike(pattern, escape='\\'),
            Message.translated_text.ilike(pattern, escape='\\'),
        ))
    )
    if conversation_id:
        results = results.filter(Message.conversation_id == conversation_id)

    rows = results.order_by(Message.created_at.desc()).limit(limit).all()

    found = []
    for message, conversation in rows:
        item = message.to_dict()
        item['conversation'] = {
            'id': conversation.id,
            'title': conversation.title,
            'doctor_language': conversation.doctor_language,
            'patient_language': conversation.patient_language,
        }
        found.append(item)
    return found


# Summaries

def store_summary(conversation_id: str, summary: Dict[str, Any]) -> Dict[str, Any]:
    row = Summary(conversation_id=conversation_id, overall_summary=summary['overall_summary'])
    for field in SUMMARY_LIST_FIELDS:
        setattr(row, field, list(summary.get(field) or []))
    db.session.add(row)
    db.session.commit()
    logger.info(f"Stored summary {row.id} for conversation {conversation_id}")
    return row.to_dict()


def get_latest_summary(conversation_id: str) -> Optional[Dict[str, Any]]:
    row = (
        Summary.query
        .filter_by(conversation_id=conversation_id)
        .order_by(Summary.created_at.desc())
        .first()
    )
    return row.to_dict() if row else None


def get_summaries(conversation_id: str) -> List[Dict[str, Any]]:
    """Summary history, newest first"""
    rows = (
        Summary.query
        .filter_by(conversation_id=conversation_id)
        .order_by(Summary.created_at.desc())
        .all()
    )
    return [row.to_dict() for row in rows]
