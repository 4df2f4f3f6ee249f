import os
import logging

import groq
from groq import Groq
from dotenv import load_dotenv

from utils.errors import LLMCallError, MalformedResponseError

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "llama-3.3-70b-versatile"

# No top_k: chat completions have no equivalent parameter
GENERATION_CONFIG = {
    "temperature": 0.3,
    "top_p": 0.95,
    "max_tokens": 1024,
}


def get_model_name():
    return os.environ.get("GROQ_MODEL") or DEFAULT_MODEL


def get_groq_client(api_key=None):
    """
    Build a Groq client from the given key or GROQ_API_KEY.

    Returns:
        Groq or None: None when no key is configured or the client cannot be built
    """
    api_key = api_key or os.environ.get("GROQ_API_KEY")
    if not api_key:
        logger.warning("GROQ_API_KEY is not set; language model features are disabled")
        return None

    try:
        return Groq(api_key=api_key)
    except Exception as client_error:
        logger.error(f"Error initializing Groq client: {client_error}", exc_info=True)
        return None


def generate_text(prompt, client, model=None):
    """
    Send a single prompt to the model and return its text.

    Args:
        prompt (str): The full prompt, sent as one user message
        client (Groq): Client returned by get_groq_client
        model (str): Optional model override

    Returns:
        str: The stripped model output

    Raises:
        LLMCallError: network, rate limit or API status failures
        MalformedResponseError: the response carried no text
    """
    model = model or get_model_name()
    try:
        chat_completion = client.chat.completions.create(
            messages=[{"role": "user", "content": prompt}],
            model=model,
            temperature=GENERATION_CONFIG["temperature"],
            top_p=GENERATION_CONFIG["top_p"],
            max_tokens=GENERATION_CONFIG["max_tokens"],
        )
    except groq.RateLimitError as api_error:
        logger.warning(f"Groq rate limit hit: {api_error}")
        raise LLMCallError(f"Rate limited by language model: {api_error}") from api_error
    except groq.APIError as api_error:
        logger.error(f"Error during Groq API call: {api_error}")
        raise LLMCallError(f"Language model request failed: {api_error}") from api_error
    except Exception as api_error:
        logger.error(f"Unexpected error during Groq API call: {api_error}", exc_info=True)
        raise LLMCallError(f"Language model request failed: {api_error}") from api_error

    try:
        content = chat_completion.choices[0].message.content
    except (AttributeError, IndexError, TypeError) as parse_error:
        raise MalformedResponseError(f"Unexpected response shape: {parse_error}") from parse_error

    if not content or not content.strip():
        raise MalformedResponseError("Language model returned an empty response")

    return content.strip()
