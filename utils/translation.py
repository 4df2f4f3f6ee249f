import re
import time
import logging

from utils.errors import LLMCallError
from utils.groq_integration import get_groq_client, generate_text
from utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {
    'en': 'English',
    'es': 'Spanish',
    'fr': 'French',
    'de': 'German',
    'it': 'Italian',
    'pt': 'Portuguese',
    'ru': 'Russian',
    'zh': 'Chinese',
    'ja': 'Japanese',
    'ko': 'Korean',
    'ar': 'Arabic',
    'hi': 'Hindi',
    'tr': 'Turkish',
    'pl': 'Polish',
    'nl': 'Dutch',
}

CONFIGURATION_ERROR = 'configuration'
EXTERNAL_ERROR = 'external'

_ENCLOSING_QUOTES = re.compile(r'^["\']|["\']$')


def get_language_name(code):
    """Readable language name for a short code, or the code in upper case"""
    return LANGUAGE_NAMES.get(code, (code or '').upper())


def build_translation_prompt(text, source_language, target_language):
    source_name = get_language_name(source_language)
    target_name = get_language_name(target_language)

    return f"""You are a professional medical translator. Translate the following text from {source_name} to {target_name}.

IMPORTANT GUIDELINES:
- Preserve medical terminology accuracy
- Maintain the original tone and urgency
- Keep numbers, measurements, and dosages exactly as provided
- Translate common symptoms and conditions using standard medical terms
- If unsure about medical terms, keep them in the original language
- Provide ONLY the translation, no explanations or notes

Text to translate:
"{text}"

Translation:"""


def _result(translation, error=None, error_type=None):
    return {'translation': translation, 'error': error, 'error_type': error_type}


def translate_text(text, source_language, target_language, client=None):
    """
    Translate text between two languages with a medical translation prompt.

    Never raises: every failure returns the original text together with an
    error description, so a message can always be delivered.

    Args:
        text (str): Text to translate
        source_language (str): Short code of the text's language
        target_language (str): Short code to translate into
        client: Optional Groq client; built from GROQ_API_KEY when omitted

    Returns:
        dict: {'translation': str, 'error': str or None, 'error_type': str or None}
    """
    if source_language == target_language:
        return _result(text)

    if client is None:
        client = get_groq_client()
    if client is None:
        logger.error("Translation requested but the language model is not configured")
        return _result(text, 'Translation service not configured', CONFIGURATION_ERROR)

    prompt = build_translation_prompt(text, source_language, target_language)
    try:
        translation = generate_text(prompt, client)
    except LLMCallError as e:
        logger.error(f"Translation error ({source_language}->{target_language}): {e.message}")
        return _result(text, e.message or 'Translation failed', EXTERNAL_ERROR)

    return _result(_ENCLOSING_QUOTES.sub('', translation))


def translate_text_with_retry(text, source_language, target_language, max_retries=2,
                              client=None, sleep=time.sleep):
    """
    translate_text with exponential backoff between attempts.

    Configuration errors are returned immediately. When every attempt fails
    the original text is returned with a summary of the last error.
    """
    results = []

    def attempt():
        result = translate_text(text, source_language, target_language, client=client)
        results.append(result)
        return result

    outcome = retry_with_backoff(
        attempt,
        max_attempts=max_retries + 1,
        fallback=_result(text),
        is_failure=lambda result: result['error'],
        should_retry=lambda result: result['error_type'] != CONFIGURATION_ERROR,
        sleep=sleep,
        description="Translation",
    )

    if outcome.succeeded:
        return outcome.value

    logger.error(outcome.error)
    error_type = results[-1]['error_type'] if results else EXTERNAL_ERROR
    return _result(text, outcome.error, error_type)
