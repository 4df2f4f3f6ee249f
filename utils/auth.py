"""
Caller identity.

Authentication is delegated: an upstream identity provider sets the
X-User-Id header for signed-in users, and guests carry the guest_session
cookie issued when they joined a conversation.
"""

import logging
from collections import namedtuple
from functools import wraps

from flask import g, request

from utils.database import get_profile, get_guest_session, get_conversation, get_participant_role
from utils.errors import AuthenticationError, AuthorizationError, NotFoundError

logger = logging.getLogger(__name__)

USER_HEADER = 'X-User-Id'
GUEST_COOKIE = 'guest_session'

Identity = namedtuple('Identity', 'sender_id user_id guest_session_id name role language')


def get_current_identity():
    """Resolve the caller from the request, or None when anonymous"""
    user_id = request.headers.get(USER_HEADER)
    if user_id:
        profile = get_profile(user_id)
        if profile is None:
            return Identity(user_id, user_id, None, None, None, None)
        return Identity(
            user_id, user_id, None,
            profile['full_name'] or profile['email'], profile['role'], profile['language'],
        )

    session = get_guest_session(request.cookies.get(GUEST_COOKIE))
    if session:
        return Identity(
            session['session_id'], None, session['session_id'],
            session['guest_name'], 'patient', session['language'],
        )
    return None


def login_required(view):
    """Reject anonymous callers with 401 and expose the caller as g.identity"""
    @wraps(view)
    def wrapped(*args, **kwargs):
        identity = get_current_identity()
        if identity is None:
            raise AuthenticationError('Not authenticated')
        g.identity = identity
        return view(*args, **kwargs)
    return wrapped


def require_participant(conversation_id, identity):
    """
    Load a conversation the caller participates in.

    Returns:
        tuple: (conversation dict, caller's role in it)
    """
    conversation = get_conversation(conversation_id)
    if conversation is None:
        raise NotFoundError(f'Conversation with ID {conversation_id} not found')

    role = get_participant_role(
        conversation_id, user_id=identity.user_id, guest_session_id=identity.guest_session_id
    )
    if role is None:
        logger.warning(f"{identity.sender_id} is not a participant of conversation {conversation_id}")
        raise AuthorizationError('Not authorized')
    return conversation, role
