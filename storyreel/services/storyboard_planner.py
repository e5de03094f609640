"""
Storyboard Planner
Uses Google Gemini to break a concept into titled, narrated scenes
"""

import asyncio
import json
import re
from typing import Optional

from ..config import Settings
from ..models.video import Storyboard, Scene
from ..utils.exceptions import ProviderError, APIKeyError
from ..utils.logger import get_logger

logger = get_logger()

MAX_DESCRIPTION_CHARS = 512
MIN_SCENES = 2


class StoryboardPlanner:
    """Storyboard breakdown from a free-text concept"""

    def __init__(self, settings: Settings, client=None):
        self.settings = settings
        self.model = settings.gemini_model
        self._client = client

    def _ensure_client(self):
        """Lazy load the Gemini client"""
        if self._client is not None:
            return

        if not self.settings.gemini_api_key:
            raise APIKeyError("Gemini")

        from google import genai
        self._client = genai.Client(api_key=self.settings.gemini_api_key)
        logger.info("Gemini client initialized")

    async def plan(self, concept: str, max_scenes: int) -> Storyboard:
        """
        Generate a storyboard for concept

        Args:
            concept: The story idea, may request a scene count ("in 4 scenes")
            max_scenes: Hard upper bound on the number of scenes

        Returns:
            Storyboard with scenes numbered from 1
        """
        if not concept or not concept.strip():
            raise ProviderError("Gemini", "cannot plan a storyboard without a concept")

        self._ensure_client()
        prompt = self._build_prompt(concept.strip(), max_scenes)
        logger.info(f"Planning storyboard (max {max_scenes} scenes)...")

        loop = asyncio.get_event_loop()
        try:
            response = await loop.run_in_executor(
                None,
                lambda: self._client.models.generate_content(
                    model=self.model,
                    contents=prompt,
                    config={
                        'response_mime_type': 'application/json',
                        'temperature': 0.7,
                    }
                )
            )
        except Exception as e:
            raise ProviderError("Gemini", f"storyboard request failed: {e}") from e

        if not response or not getattr(response, 'text', None):
            raise ProviderError("Gemini", "empty response (possibly blocked)")

        storyboard = parse_storyboard(response.text, max_scenes)
        logger.info(f"Storyboard \"{storyboard.title}\" with {len(storyboard.scenes)} scenes")
        return storyboard

    def _build_prompt(self, concept: str, max_scenes: int) -> str:
        min_scenes = min(MIN_SCENES, max_scenes)
        return f"""You are an expert video creator and visual storyteller specializing in AI video storyboards.

Create a complete video storyboard for this concept: "{concept}"

REQUIREMENTS:
- If the concept asks for a specific number of scenes, generate exactly that many, never more than {max_scenes}
- Otherwise choose the number of scenes the story needs, between {min_scenes} and {max_scenes}
- Scene 1 must be an attention-grabbing hook
- Number scenes sequentially starting from 1
- Each scene is a 5-8 second clip
- 'visual_description': subject, action, camera movement, lighting and composition (under {MAX_DESCRIPTION_CHARS} characters)
- 'voiceover': 1-3 concise sentences speakable within the clip
- 'visual_style' applies to every scene
- 'music_description': instruments, tempo, mood and genre for a text-to-music model (under 256 characters)
- 3-5 tags

RESPOND IN VALID JSON FORMAT ONLY:
{{
    "title": "string",
    "tags": ["string"],
    "visual_style": "string",
    "music_description": "string",
    "scenes": [
        {{"scene_number": 1, "visual_description": "string", "voiceover": "string"}}
    ]
}}"""


def parse_storyboard(response_text: str, max_scenes: int) -> Storyboard:
    """
    Parse the model's JSON into a Storyboard

    Scenes beyond max_scenes are dropped and the rest renumbered 1..n in the
    order the model numbered them.

    Raises:
        ProviderError: no usable JSON or no scenes
    """
    json_match = re.search(r'\{[\s\S]*\}', response_text or "")
    if not json_match:
        raise ProviderError("Gemini", "no JSON found in storyboard response")

    try:
        data = json.loads(json_match.group())
    except json.JSONDecodeError as e:
        raise ProviderError("Gemini", f"invalid storyboard JSON: {e}") from e

    raw_scenes = [s for s in data.get("scenes", []) if isinstance(s, dict)]
    raw_scenes.sort(key=lambda s: _scene_order(s.get("scene_number", s.get("sceneNumber"))))

    style = str(data.get("visual_style") or data.get("visualStyle") or "").strip()
    scenes = []
    for raw in raw_scenes[:max_scenes]:
        description = str(raw.get("visual_description") or raw.get("description") or "").strip()
        if not description:
            continue
        scenes.append(Scene(
            scene_number=len(scenes) + 1,
            description=description[:MAX_DESCRIPTION_CHARS],
            voiceover=str(raw.get("voiceover") or "").strip(),
        ))

    if not scenes:
        raise ProviderError("Gemini", "storyboard contained no scenes")

    tags = data.get("tags") or []
    return Storyboard(
        title=str(data.get("title") or "Untitled").strip(),
        tags=[str(t) for t in tags if t][:5],
        music_description=str(data.get("music_description") or data.get("musicDescription") or "").strip(),
        visual_style=style,
        scenes=scenes,
    )


def _scene_order(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float("inf")
