"""
The completion provider: a thin, stateless wrapper around the Gemini API.

Agents never talk to `google.generativeai` directly. They call one of four
operations here (structured JSON, free text, streamed text, image) and get
back plain Python values, so tests can substitute a mock provider and the
rest of the core stays independent of the SDK.
"""
import base64
import json
import logging
from typing import Any, Iterator, Optional

import google.generativeai as genai

from config import DEFAULT_IMAGE_MODEL, DEFAULT_MODEL_NAME, IMAGE_MODELS, SAFETY_SETTINGS, TITLE_MODEL_NAME
from errors import ProviderResponseError
from tracer import trace

Contents = Any  # a prompt string or a list of {"role", "parts"} dictionaries


def _response_text(response) -> str:
    """Extracts text from a response, turning SDK block errors into ProviderResponseError."""
    try:
        return response.text
    except ValueError as e:
        feedback = getattr(response, "prompt_feedback", None)
        raise ProviderResponseError(f"The model returned no usable content ({feedback or e}).") from e


class GeminiProvider:
    """
    Issues completion calls against one user's Gemini API key.

    One instance is created per conversation turn, because the key belongs to
    the caller rather than to the server.
    """

    @trace
    def __init__(self, api_key: str, model_name: str = DEFAULT_MODEL_NAME):
        if not api_key:
            raise ValueError("No Gemini API key was provided.")
        genai.configure(api_key=api_key)
        self.model_name = model_name

    def _model(self, system_instruction: Optional[str], model: Optional[str]) -> genai.GenerativeModel:
        return genai.GenerativeModel(
            model_name=model or self.model_name,
            system_instruction=system_instruction or None,
            safety_settings=SAFETY_SETTINGS,
        )

    @staticmethod
    def _generation_config(temperature: Optional[float], top_p: Optional[float], **extra) -> dict[str, Any]:
        config = dict(extra)
        if temperature is not None:
            config["temperature"] = temperature
        if top_p is not None:
            config["top_p"] = top_p
        return config

    @trace
    def generate_json(
        self,
        system_instruction: str,
        contents: Contents,
        schema: dict[str, Any],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ) -> dict[str, Any]:
        """
        Requests a response constrained to `schema` and returns it parsed.

        Raises:
            ProviderResponseError: If the model's output is empty or is not a
                JSON object.
        """
        config = self._generation_config(
            temperature, top_p, response_mime_type="application/json", response_schema=schema
        )
        response = self._model(system_instruction, model).generate_content(contents, generation_config=config)
        text = _response_text(response).strip()
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            raise ProviderResponseError(f"The model returned a malformed structured response: {e}") from e
        if not isinstance(parsed, dict):
            raise ProviderResponseError("The model returned a structured response that is not an object.")
        return parsed

    @trace
    def generate_text(
        self,
        system_instruction: str,
        contents: Contents,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Requests a free-text response."""
        config = self._generation_config(temperature, None)
        response = self._model(system_instruction, model).generate_content(contents, generation_config=config)
        return _response_text(response)

    def stream_text(
        self,
        system_instruction: str,
        contents: Contents,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> Iterator[str]:
        """Yields the response text chunk by chunk as the provider produces it."""
        config = self._generation_config(temperature, None)
        response = self._model(system_instruction, model).generate_content(
            contents, generation_config=config, stream=True
        )
        for chunk in response:
            try:
                text = chunk.text
            except ValueError:
                # Chunks carrying only metadata have no text part.
                continue
            if text:
                yield text

    @trace
    def generate_image(self, prompt: str, image_model: Optional[str] = None) -> str:
        """
        Generates one image and returns it base64-encoded.

        Args:
            prompt: The enhanced image prompt.
            image_model: A profile-level model key (see config.IMAGE_MODELS).
        """
        model_name = IMAGE_MODELS.get(image_model or DEFAULT_IMAGE_MODEL, IMAGE_MODELS[DEFAULT_IMAGE_MODEL])
        logging.info(f"Generating image with model '{model_name}'.")
        response = genai.GenerativeModel(model_name=model_name).generate_content(prompt)
        for candidate in getattr(response, "candidates", None) or []:
            for part in candidate.content.parts:
                inline = getattr(part, "inline_data", None)
                if inline is not None and inline.data:
                    return base64.b64encode(inline.data).decode("ascii")
        raise ProviderResponseError("The image model did not return an image.")

    @trace
    def generate_chat_title(self, user_text: str, ai_text: Optional[str] = None) -> str:
        """Creates a 3-5 word chat title from the opening exchange."""
        prompt = (
            "Based on the following conversation opening, generate a short, descriptive chat title "
            "(3-5 words max). Do not use quotes or special characters.\n\n"
            f'User prompt: "{user_text}"'
        )
        if ai_text:
            prompt += f'\nAI reply: "{ai_text[:500]}"'
        title = self.generate_text(
            "You are an AI that creates concise titles for conversations.",
            prompt,
            model=TITLE_MODEL_NAME,
            temperature=0.2,
        )
        return title.replace('"', "").strip()
