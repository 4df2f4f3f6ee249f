import uuid
from datetime import datetime, timezone
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

ROLES = ('doctor', 'patient')


def utcnow():
    """Naive UTC timestamp, as stored by SQLite"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id():
    return str(uuid.uuid4())


def _iso(value):
    return value.isoformat() if value else None


class Profile(db.Model):
    __tablename__ = 'profiles'

    id = db.Column(db.String(64), primary_key=True)  # issued by the identity provider
    email = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(16), nullable=False, default='patient')
    language = db.Column(db.String(16), nullable=False, default='en')
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'full_name': self.full_name,
            'role': self.role,
            'language': self.language,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Conversation(db.Model):
    __tablename__ = 'conversations'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    creator_id = db.Column(db.String(64), db.ForeignKey('profiles.id'), nullable=False)
    title = db.Column(db.String(255), nullable=True)
    doctor_language = db.Column(db.String(16), nullable=False)
    patient_language = db.Column(db.String(16), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    creator = db.relationship('Profile')
    participants = db.relationship('ConversationParticipant', backref='conversation',
                                   lazy=True, cascade='all, delete-orphan')
    messages = db.relationship('Message', backref='conversation', lazy=True,
                               cascade='all, delete-orphan')
    summaries = db.relationship('Summary', backref='conversation', lazy=True,
                                cascade='all, delete-orphan')
    guest_sessions = db.relationship('GuestSession', backref='conversation', lazy=True,
                                     cascade='all, delete-orphan')

    def to_dict(self, include_participants=False):
        data = {
            'id': self.id,
            'creator_id': self.creator_id,
            'title': self.title,
            'doctor_language': self.doctor_language,
            'patient_language': self.patient_language,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
        if include_participants:
            data['creator'] = {
                'full_name': self.creator.full_name if self.creator else None,
                'email': self.creator.email if self.creator else None,
            }
            data['participants'] = [p.to_dict() for p in self.participants]
        return data


class ConversationParticipant(db.Model):
    __tablename__ = 'conversation_participants'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    conversation_id = db.Column(db.String(36), db.ForeignKey('conversations.id'), nullable=False)
    user_id = db.Column(db.String(64), db.ForeignKey('profiles.id'), nullable=True)
    guest_session_id = db.Column(db.String(64), db.ForeignKey('guest_sessions.session_id'),
                                 nullable=True)
    role = db.Column(db.String(16), nullable=False)
    joined_at = db.Column(db.DateTime, default=utcnow)

    profile = db.relationship('Profile')
    guest_session = db.relationship('GuestSession')

    __table_args__ = (
        db.UniqueConstraint('conversation_id', 'user_id', name='uq_participant_user'),
    )

    def to_dict(self):
        if self.profile is not None:
            name = self.profile.full_name or self.profile.email
        elif self.guest_session is not None:
            name = self.guest_session.guest_name
        else:
            name = None
        return {
            'id': self.id,
            'user_id': self.user_id,
            'guest_session_id': self.guest_session_id,
            'role': self.role,
            'name': name,
            'is_guest': self.guest_session_id is not None,
            'joined_at': _iso(self.joined_at),
        }


class GuestSession(db.Model):
    __tablename__ = 'guest_sessions'

    session_id = db.Column(db.String(64), primary_key=True)
    guest_name = db.Column(db.String(255), nullable=False)
    conversation_id = db.Column(db.String(36), db.ForeignKey('conversations.id'), nullable=False)
    language = db.Column(db.String(16), nullable=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)


class Message(db.Model):
    __tablename__ = 'messages'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    conversation_id = db.Column(db.String(36), db.ForeignKey('conversations.id'), nullable=False)
    sender_id = db.Column(db.String(64), nullable=False)
    sender_role = db.Column(db.String(16), nullable=False)
    original_text = db.Column(db.Text, nullable=True)
    translated_text = db.Column(db.Text, nullable=True)
    audio_url = db.Column(db.String(512), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'conversation_id': self.conversation_id,
            'sender_id': self.sender_id,
            'sender_role': self.sender_role,
            'original_text': self.original_text,
            'translated_text': self.translated_text,
            'audio_url': self.audio_url,
            'created_at': _iso(self.created_at),
        }


class Summary(db.Model):
    __tablename__ = 'summaries'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    conversation_id = db.Column(db.String(36), db.ForeignKey('conversations.id'), nullable=False)
    overall_summary = db.Column(db.Text, nullable=False)
    symptoms = db.Column(db.JSON, nullable=False, default=list)
    diagnoses = db.Column(db.JSON, nullable=False, default=list)
    medications = db.Column(db.JSON, nullable=False, default=list)
    allergies = db.Column(db.JSON, nullable=False, default=list)
    follow_up_actions = db.Column(db.JSON, nullable=False, default=list)
    patient_concerns = db.Column(db.JSON, nullable=False, default=list)
    doctor_recommendations = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'conversation_id': self.conversation_id,
            'overall_summary': self.overall_summary,
            'symptoms': self.symptoms or [],
            'diagnoses': self.diagnoses or [],
            'medications': self.medications or [],
            'allergies': self.allergies or [],
            'follow_up_actions': self.follow_up_actions or [],
            'patient_concerns': self.patient_concerns or [],
            'doctor_recommendations': self.doctor_recommendations or [],
            'created_at': _iso(self.created_at),
        }
