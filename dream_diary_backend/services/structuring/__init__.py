"""Dream structuring: transcription text to titled scene breakdown."""

from .prompts import StructuringPrompts
from .service import DreamStructuringService, fallback_structure, parse_response
