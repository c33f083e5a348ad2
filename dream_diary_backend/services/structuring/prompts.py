"""Dream structuring prompt templates."""

from dataclasses import dataclass


@dataclass
class StructuringPrompts:
    """Centralized prompt management for dream structuring and titling."""

    STRUCTURE_SYSTEM = """You are a dream analyst and visual storyteller. You turn dream transcriptions into structured scene breakdowns for comic strip generation. You always answer with a single valid JSON object and nothing else."""

    STRUCTURE_USER = """Process this dream transcription and create a structured output for comic strip generation.

DREAM TRANSCRIPTION:
"{transcription}"

Provide a structured response in the following JSON format:

{{
  "title": "A catchy, descriptive title for this dream (3-8 words, evocative and memorable)",
  "summary": "A concise 2-3 sentence summary of the overall dream",
  "mood": "primary emotional tone (happy, mysterious, scary, surreal, peaceful, chaotic, etc.)",
  "themes": ["theme1", "theme2", "theme3"],
  {characters_field}"scenes": [
    {{
      "sequence": 1,
      "description": "Detailed visual description of this scene (50-80 words)",
      "action": "What is happening in this scene",
      "setting": "Where this scene takes place",
      {emotion_field}"visual_style": "suggested art style or mood (realistic, surreal, dark, bright, etc.)",
      "image_prompt": "Optimized prompt for AI image generation (30-50 words, vivid and specific)"
    }}
  ]
}}

IMPORTANT GUIDELINES:
1. Create exactly {scene_count} scenes that tell the dream story chronologically
2. Each scene should be visually distinct and interesting for comic panels
3. Focus on the most vivid, memorable, or significant moments
4. Make image prompts specific and visual (avoid abstract concepts)
5. Ensure scenes flow logically from one to the next
6. Include visual details like lighting, colors, atmosphere
7. Keep descriptions engaging but concise
8. Make sure the JSON is valid and properly formatted

Return ONLY the JSON response, no additional text or formatting."""

    CHARACTERS_FIELD = '"characters": ["character1", "character2"],\n  '
    EMOTION_FIELD = '"emotion": "emotional tone of this specific scene",\n      '

    TITLE_USER = """Generate a creative, evocative title (3-8 words) for this dream. Make it poetic and memorable, capturing the essence and emotion:

DREAM SUMMARY: "{summary}"
MOOD: {mood}
THEMES: {themes}

Examples of good dream titles:
- "The Glass Forest Journey"
- "Racing Through Time"
- "Dancing with Smoke Spirits"
- "Echoes of Childhood Home"

Return ONLY the title, no quotes or additional text."""

    @classmethod
    def structure_messages(
        cls,
        transcription: str,
        scene_count: int,
        include_emotions: bool = True,
        include_characters: bool = True,
    ) -> list[dict[str, str]]:
        user = cls.STRUCTURE_USER.format(
            transcription=transcription,
            scene_count=scene_count,
            characters_field=cls.CHARACTERS_FIELD if include_characters else "",
            emotion_field=cls.EMOTION_FIELD if include_emotions else "",
        )
        return [
            {"role": "system", "content": cls.STRUCTURE_SYSTEM},
            {"role": "user", "content": user},
        ]

    @classmethod
    def title_messages(cls, summary: str, mood: str, themes: list[str]) -> list[dict[str, str]]:
        return [
            {"role": "user", "content": cls.TITLE_USER.format(summary=summary, mood=mood, themes=", ".join(themes))},
        ]
