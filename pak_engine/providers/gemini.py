"""Gemini gateway: chat with tools, image generation, search, reasoning, speech."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from google import genai
from google.genai import types

from ..errors import BackendFailure, NoAudioProduced, NoImageProduced
from ..models.selectors import ModelSelector
from ..turns import Completion, ConversationTurn, ImageBlob, SearchAnswer
from .base import call_with_timeout
from .google_utils import (
    build_client,
    extract_audio_bytes,
    extract_image_blobs,
    extract_sources,
    extract_text,
    extract_tool_calls,
    history_to_contents,
    image_part,
    translate_errors,
    turn_to_content,
)

DEFAULT_THINKING_BUDGET = 32768
DEFAULT_VOICE = "Kore"


class GeminiGateway:
    name = "gemini"

    def __init__(
        self,
        client: genai.Client | None = None,
        *,
        selector: ModelSelector | None = None,
        timeout_s: float | None = None,
        voice: str = DEFAULT_VOICE,
    ) -> None:
        self._client = client
        self.selector = selector or ModelSelector(provider="gemini")
        self.timeout_s = timeout_s
        self.voice = voice

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = build_client()
        return self._client

    def _generate(self, capability: str, action: str, contents: Any, config: types.GenerateContentConfig | None) -> Any:
        model = self.selector.resolve(capability)
        with translate_errors(action):
            return call_with_timeout(
                self.client.models.generate_content,
                model=model,
                contents=contents,
                config=config,
                timeout_s=self.timeout_s,
            )

    def complete_with_tools(
        self,
        history: Sequence[ConversationTurn],
        turn: ConversationTurn,
        system_instruction: str,
        tools: Sequence[Mapping[str, Any]],
    ) -> Completion:
        contents = history_to_contents(history)
        contents.append(turn_to_content(turn))
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            tools=[types.Tool(function_declarations=[_function_declaration(tool) for tool in tools])],
        )
        response = self._generate("chat", "Chat completion", contents, config)
        return Completion(text=extract_text(response), tool_calls=extract_tool_calls(response))

    def generate_image(self, prompt: str, aspect_ratio: str | None = None) -> ImageBlob:
        return self._image_request("Image generation", [types.Part(text=prompt)], aspect_ratio)

    def generate_image_from_references(self, prompt: str, images: Sequence[ImageBlob]) -> ImageBlob:
        if not images:
            raise NoImageProduced("No reference images provided.")
        # Images first, then the instruction.
        parts = [image_part(image) for image in images]
        parts.append(types.Part(text=prompt))
        return self._image_request("Reference image generation", parts, None)

    def _image_request(self, action: str, parts: list[types.Part], aspect_ratio: str | None) -> ImageBlob:
        config_kwargs: dict[str, Any] = {"response_modalities": ["IMAGE"]}
        if aspect_ratio:
            config_kwargs["image_config"] = types.ImageConfig(aspect_ratio=aspect_ratio)
        response = self._generate(
            "image",
            action,
            types.Content(role="user", parts=parts),
            types.GenerateContentConfig(**config_kwargs),
        )
        blobs = extract_image_blobs(response)
        if not blobs:
            detail = extract_text(response).strip()
            raise NoImageProduced(detail or f"{action} returned no image.")
        return blobs[0]

    def search(self, query: str) -> SearchAnswer:
        config = types.GenerateContentConfig(tools=[types.Tool(google_search=types.GoogleSearch())])
        response = self._generate(
            "search",
            "Web search",
            [types.Content(role="user", parts=[types.Part(text=query)])],
            config,
        )
        return SearchAnswer(text=extract_text(response), sources=extract_sources(response))

    def complex_reasoning(self, query: str) -> str:
        config = types.GenerateContentConfig(
            thinking_config=types.ThinkingConfig(thinking_budget=DEFAULT_THINKING_BUDGET),
        )
        response = self._generate(
            "reasoning",
            "Complex query",
            [types.Content(role="user", parts=[types.Part(text=query)])],
            config,
        )
        return extract_text(response)

    def synthesize_speech(self, text: str) -> bytes:
        config = types.GenerateContentConfig(
            response_modalities=["AUDIO"],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=self.voice),
                )
            ),
        )
        response = self._generate(
            "speech",
            "Speech synthesis",
            types.Content(role="user", parts=[types.Part(text=text or "I cannot speak this.")]),
            config,
        )
        audio = extract_audio_bytes(response)
        if not audio:
            raise NoAudioProduced("No audio data returned from TTS model.")
        return audio

    def analyze_image(self, image: ImageBlob, instruction: str) -> str:
        response = self._generate(
            "vision",
            "Image analysis",
            types.Content(role="user", parts=[image_part(image), types.Part(text=instruction)]),
            None,
        )
        text = extract_text(response)
        if not text.strip():
            raise BackendFailure("Image analysis returned no text.")
        return text


class GeminiImageBackend:
    """Flash-image backend; the secondary attempt of the generation pipeline."""

    name = "gemini"

    def __init__(self, gateway: GeminiGateway) -> None:
        self.gateway = gateway

    def generate(self, prompt: str, aspect_ratio: str) -> ImageBlob:
        # The synthesized prompt already carries the ratio; the image config is
        # left out so older flash-image models accept the request.
        return self.gateway.generate_image(prompt)


def _function_declaration(tool: Mapping[str, Any]) -> types.FunctionDeclaration:
    params = tool.get("parameters") or {}
    properties = {
        key: types.Schema(type=types.Type.STRING, description=str(value.get("description") or ""))
        for key, value in (params.get("properties") or {}).items()
    }
    if not properties:
        return types.FunctionDeclaration(name=str(tool["name"]), description=str(tool.get("description") or ""))
    return types.FunctionDeclaration(
        name=str(tool["name"]),
        description=str(tool.get("description") or ""),
        parameters=types.Schema(
            type=types.Type.OBJECT,
            properties=properties,
            required=list(params.get("required") or []),
        ),
    )
