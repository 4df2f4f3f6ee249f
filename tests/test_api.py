import json
import shutil
import tempfile
import unittest
from io import BytesIO
from unittest.mock import patch

from app_factory import create_app
from models import db
from utils.errors import SummaryGenerationError

DOCTOR = {'X-User-Id': 'doc-1'}
PATIENT = {'X-User-Id': 'pat-1'}
STRANGER = {'X-User-Id': 'stranger-1'}

SUMMARY = {
    'overall_summary': 'Patient reports a two day headache. Ibuprofen advised.',
    'symptoms': ['headache'],
    'diagnoses': [],
    'medications': ['ibuprofen 400 mg'],
    'allergies': [],
    'follow_up_actions': ['return if symptoms worsen'],
    'patient_concerns': [],
    'doctor_recommendations': ['rest', 'hydration'],
}


def passthrough(text, source_language, target_language, max_retries=2):
    return {'translation': f"[{target_language}] {text}", 'error': None, 'error_type': None}


class APITestCase(unittest.TestCase):
    def setUp(self):
        # Configure app for testing
        self.upload_dir = tempfile.mkdtemp()
        self.app = create_app('testing')
        self.app.config['UPLOAD_FOLDER'] = self.upload_dir
        self.client = self.app.test_client()

        self.put_profile(DOCTOR, email='house@example.com', full_name='Dr. House', role='doctor', language='en')
        self.put_profile(PATIENT, email='maria@example.com', full_name='Maria', role='patient', language='es')
        self.put_profile(STRANGER, email='x@example.com', role='patient')

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
        shutil.rmtree(self.upload_dir, ignore_errors=True)

    def put_profile(self, headers, **fields):
        response = self.client.put('/api/profile', json=fields, headers=headers)
        self.assertEqual(response.status_code, 200)
        return json.loads(response.data)['profile']

    def create_conversation(self, **fields):
        response = self.client.post('/api/conversations', json=fields, headers=DOCTOR)
        self.assertEqual(response.status_code, 201)
        return json.loads(response.data)['conversation_id']

    def joined_conversation(self):
        conversation_id = self.create_conversation(title='Headache')
        response = self.client.post(f'/api/conversations/{conversation_id}/join', headers=PATIENT)
        self.assertEqual(response.status_code, 200)
        return conversation_id

    def send(self, conversation_id, text, headers=DOCTOR):
        with patch('blueprints.api_routes.translate_text_with_retry', side_effect=passthrough):
            return self.client.post(f'/api/conversations/{conversation_id}/messages',
                                    json={'text': text}, headers=headers)

    def test_index_route(self):
        """Test the main route returns the HTML page"""
        response = self.client.get('/')
        self.assertEqual(response.status_code, 200)
        self.assertIn(b'<!DOCTYPE html>', response.data)

        response = self.client.get('/test')
        self.assertEqual(json.loads(response.data)['status'], 'success')

    def test_languages(self):
        data = json.loads(self.client.get('/api/languages').data)
        codes = [language['code'] for language in data['languages']]
        self.assertIn('en', codes)
        self.assertIn('es', codes)

    def test_requires_authentication(self):
        response = self.client.get('/api/conversations')
        self.assertEqual(response.status_code, 401)
        data = json.loads(response.data)
        self.assertEqual(data['status'], 'error')

    def test_profile_round_trip(self):
        data = json.loads(self.client.get('/api/profile', headers=PATIENT).data)
        self.assertEqual(data['profile']['language'], 'es')

        response = self.client.put('/api/profile', json={'language': 'xx'}, headers=PATIENT)
        self.assertEqual(response.status_code, 400)

    def test_only_doctors_create_conversations(self):
        response = self.client.post('/api/conversations', json={}, headers=PATIENT)
        self.assertEqual(response.status_code, 403)
        self.assertIn('Only doctors', json.loads(response.data)['message'])

    def test_create_and_list_conversations(self):
        conversation_id = self.create_conversation(title='Headache', patient_language='es')

        data = json.loads(self.client.get('/api/conversations', headers=DOCTOR).data)
        self.assertEqual([c['id'] for c in data['conversations']], [conversation_id])
        self.assertEqual(data['conversations'][0]['patient_language'], 'es')

        data = json.loads(self.client.get(f'/api/conversations/{conversation_id}', headers=DOCTOR).data)
        self.assertEqual(data['user_role'], 'doctor')

    def test_non_participant_is_rejected(self):
        conversation_id = self.create_conversation()

        response = self.client.get(f'/api/conversations/{conversation_id}/messages', headers=STRANGER)
        self.assertEqual(response.status_code, 403)

        response = self.client.get('/api/conversations/missing/messages', headers=STRANGER)
        self.assertEqual(response.status_code, 404)

    def test_join_twice_is_success(self):
        conversation_id = self.create_conversation()

        first = json.loads(self.client.post(f'/api/conversations/{conversation_id}/join', headers=PATIENT).data)
        second = json.loads(self.client.post(f'/api/conversations/{conversation_id}/join', headers=PATIENT).data)

        self.assertEqual(first['message'], 'Joined conversation')
        self.assertEqual(second['message'], 'Already joined')
        self.assertEqual(second['role'], 'patient')

        data = json.loads(self.client.get(f'/api/conversations/{conversation_id}', headers=DOCTOR).data)
        self.assertEqual(data['conversation']['patient_language'], 'es')

    def test_send_message_translates_for_the_other_side(self):
        conversation_id = self.joined_conversation()

        response = self.send(conversation_id, 'How long have you had the headache?')
        self.assertEqual(response.status_code, 201)
        message = json.loads(response.data)['message']
        self.assertEqual(message['sender_role'], 'doctor')
        self.assertEqual(message['translated_text'], '[es] How long have you had the headache?')

        response = self.send(conversation_id, 'Dos dias', headers=PATIENT)
        self.assertEqual(json.loads(response.data)['message']['translated_text'], '[en] Dos dias')

        data = json.loads(self.client.get(f'/api/conversations/{conversation_id}/messages', headers=PATIENT).data)
        self.assertEqual([m['original_text'] for m in data['messages']],
                         ['How long have you had the headache?', 'Dos dias'])

    def test_send_message_without_api_key_stores_original_text(self):
        conversation_id = self.joined_conversation()

        response = self.client.post(f'/api/conversations/{conversation_id}/messages',
                                    json={'text': 'Take one tablet'}, headers=DOCTOR)

        self.assertEqual(response.status_code, 201)
        message = json.loads(response.data)['message']
        self.assertEqual(message['translated_text'], 'Take one tablet')

    def test_send_empty_message(self):
        conversation_id = self.joined_conversation()
        response = self.send(conversation_id, '   ')
        self.assertEqual(response.status_code, 400)

    def test_send_message_publishes_to_subscribers(self):
        conversation_id = self.joined_conversation()
        subscription = self.app.extensions['message_broker'].subscribe(conversation_id)

        message = json.loads(self.send(conversation_id, 'Hello').data)['message']

        self.assertEqual(subscription.get(timeout=1)['id'], message['id'])
        subscription.close()

    def test_guest_join_and_send(self):
        conversation_id = self.create_conversation()

        response = self.client.post(f'/api/conversations/{conversation_id}/guest',
                                    json={'guest_name': 'Ana', 'language': 'pt'})
        self.assertEqual(response.status_code, 201)
        data = json.loads(response.data)
        self.assertIn('guest_session=', response.headers['Set-Cookie'])
        self.assertIn('HttpOnly', response.headers['Set-Cookie'])

        guest = self.app.test_client()
        guest.set_cookie('guest_session', data['session_id'])

        with patch('blueprints.api_routes.translate_text_with_retry', side_effect=passthrough):
            response = guest.post(f'/api/conversations/{conversation_id}/messages', json={'text': 'Olá'})
        self.assertEqual(response.status_code, 201)
        message = json.loads(response.data)['message']
        self.assertEqual(message['sender_role'], 'patient')
        self.assertEqual(message['sender_id'], data['session_id'])
        self.assertEqual(message['translated_text'], '[en] Olá')

        again = json.loads(guest.post(f'/api/conversations/{conversation_id}/join').data)
        self.assertEqual(again['message'], 'Already joined')

        response = guest.get('/api/profile')
        self.assertEqual(response.status_code, 403)

    def test_guest_requires_name(self):
        conversation_id = self.create_conversation()
        response = self.client.post(f'/api/conversations/{conversation_id}/guest', json={})
        self.assertEqual(response.status_code, 400)

    def test_audio_upload_and_download(self):
        conversation_id = self.joined_conversation()

        response = self.client.post(
            f'/api/conversations/{conversation_id}/audio',
            data={'audio': (BytesIO(b'RIFF\x24\x00\x00\x00WAVE'), 'note.wav')},
            content_type='multipart/form-data',
            headers=PATIENT,
        )
        self.assertEqual(response.status_code, 201)
        message = json.loads(response.data)['message']
        self.assertTrue(message['audio_url'].startswith(f'/api/audio/{conversation_id}_'))

        response = self.client.get(message['audio_url'], headers=DOCTOR)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, b'RIFF\x24\x00\x00\x00WAVE')
        response.close()

        response = self.client.get(message['audio_url'], headers=STRANGER)
        self.assertEqual(response.status_code, 403)

    def test_audio_upload_rejects_other_formats(self):
        conversation_id = self.joined_conversation()
        response = self.client.post(
            f'/api/conversations/{conversation_id}/audio',
            data={'audio': (BytesIO(b'data'), 'notes.txt')},
            content_type='multipart/form-data',
            headers=DOCTOR,
        )
        self.assertEqual(response.status_code, 400)

    def test_stream_confirms_subscription(self):
        conversation_id = self.joined_conversation()
        broker = self.app.extensions['message_broker']

        response = self.client.get(f'/api/conversations/{conversation_id}/stream', headers=PATIENT)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.mimetype, 'text/event-stream')

        first = next(response.iter_encoded())
        self.assertIn(b'event: status', first)
        self.assertIn(b'SUBSCRIBED', first)
        self.assertEqual(broker.subscriber_count(conversation_id), 1)

        response.close()
        self.assertEqual(broker.subscriber_count(conversation_id), 0)

    @patch('blueprints.api_routes.generate_medical_summary_with_retry')
    def test_generate_summary(self, mock_summary):
        mock_summary.return_value = SUMMARY
        conversation_id = self.joined_conversation()
        self.send(conversation_id, 'Take ibuprofen 400 mg')

        response = self.client.post(f'/api/conversations/{conversation_id}/summaries', headers=DOCTOR)

        self.assertEqual(response.status_code, 201)
        summary = json.loads(response.data)['summary']
        self.assertEqual(summary['medications'], ['ibuprofen 400 mg'])
        messages = mock_summary.call_args.args[0]
        self.assertEqual(messages[0]['original_text'], 'Take ibuprofen 400 mg')
        self.assertEqual(mock_summary.call_args.kwargs['max_attempts'], 3)

        latest = json.loads(self.client.get(
            f'/api/conversations/{conversation_id}/summaries/latest', headers=PATIENT).data)
        self.assertEqual(latest['summary']['id'], summary['id'])

        history = json.loads(self.client.get(
            f'/api/conversations/{conversation_id}/summaries', headers=PATIENT).data)
        self.assertEqual(len(history['summaries']), 1)

        response = self.client.get(
            f'/api/conversations/{conversation_id}/summaries/latest?format=text', headers=DOCTOR)
        self.assertEqual(response.mimetype, 'text/plain')
        text = response.get_data(as_text=True)
        self.assertTrue(text.startswith('MEDICAL CONSULTATION SUMMARY'))
        self.assertIn('• ibuprofen 400 mg', text)

    @patch('blueprints.api_routes.generate_medical_summary_with_retry')
    def test_summary_failure_returns_502(self, mock_summary):
        mock_summary.side_effect = SummaryGenerationError('Failed to generate medical summary. Please try again.')
        conversation_id = self.joined_conversation()
        self.send(conversation_id, 'Hello')

        response = self.client.post(f'/api/conversations/{conversation_id}/summaries', headers=DOCTOR)

        self.assertEqual(response.status_code, 502)
        data = json.loads(response.data)
        self.assertEqual(data['status'], 'error')
        self.assertEqual(data['message'], 'Failed to generate medical summary. Please try again.')

    def test_summary_permissions_and_empty_transcript(self):
        conversation_id = self.joined_conversation()

        response = self.client.post(f'/api/conversations/{conversation_id}/summaries', headers=DOCTOR)
        self.assertEqual(response.status_code, 400)

        response = self.client.post(f'/api/conversations/{conversation_id}/summaries', headers=PATIENT)
        self.assertEqual(response.status_code, 403)

        response = self.client.get(
            f'/api/conversations/{conversation_id}/summaries/latest?format=text', headers=DOCTOR)
        self.assertEqual(response.status_code, 404)

    def test_search(self):
        conversation_id = self.joined_conversation()
        self.send(conversation_id, 'Any allergies to penicillin?')
        self.send(conversation_id, 'No alergias', headers=PATIENT)

        data = json.loads(self.client.get('/api/search?q=PENICILLIN', headers=PATIENT).data)
        self.assertEqual(data['query'], 'PENICILLIN')
        self.assertEqual([r['original_text'] for r in data['results']], ['Any allergies to penicillin?'])

        data = json.loads(self.client.get('/api/search?q=penicillin', headers=STRANGER).data)
        self.assertEqual(data['results'], [])

    def test_delete_conversation(self):
        conversation_id = self.joined_conversation()

        response = self.client.delete(f'/api/conversations/{conversation_id}', headers=PATIENT)
        self.assertEqual(response.status_code, 403)

        response = self.client.delete(f'/api/conversations/{conversation_id}', headers=DOCTOR)
        self.assertEqual(response.status_code, 200)

        response = self.client.delete(f'/api/conversations/{conversation_id}', headers=DOCTOR)
        self.assertEqual(response.status_code, 404)

    def test_diagnose(self):
        data = json.loads(self.client.get('/api/diagnose').data)
        self.assertEqual(data['environment']['GROQ_API_KEY'], 'NOT SET')
        self.assertEqual(data['services']['translation'], 'passthrough')
        self.assertEqual(data['missing'], ['GROQ_API_KEY'])


if __name__ == '__main__':
    unittest.main()
