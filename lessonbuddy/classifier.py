"""
OpenAI-backed action classifier.

Given a camera frame, the instruction shown to the learner and the expected
interaction, asks a vision-capable chat model what the learner is doing and
whether it matches. The remote model is treated as unreliable:

- A response that cannot be parsed into the expected structure falls back to
  `heuristic_classification()`, a keyword/color match between the
  instruction and the raw response text.
- Transport failures are raised as ClassificationError with a kind
  (not available, access denied, rate limited, other) so callers can show a
  specific message.
"""

import base64
import io
import json
from typing import Any, Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI
from PIL import Image

from .errors import ClassificationError, ClassificationErrorKind
from .logger import logger, Timer
from .models import ClassificationResult, Interaction

DEFAULT_VISION_MODEL = "gpt-4o-mini"
MAX_IMAGE_SIDE = 1024
JPEG_QUALITY = 70
HEURISTIC_CONFIDENCE = 0.6

FALLBACK_HINT = (
    "Try looking more carefully at the objects around you and think about "
    "what the instruction is asking you to do."
)

COLORS = ["red", "blue", "yellow", "green", "white", "black", "orange", "purple", "pink"]

CLASSIFY_SYSTEM_PROMPT = (
    "You are an AI tutor analyzing what a learner is doing in a photo taken "
    "with their phone camera.\n\n"
    "Determine:\n"
    "1. Which objects, colors and shapes are visible.\n"
    "2. What the learner is doing (touching, pointing, holding, showing).\n"
    "3. Whether that matches the expected action.\n"
    "4. Specific, encouraging feedback.\n\n"
    "Pay attention to hand gestures and positions, object colors, fingers "
    "touching or pointing at objects, and objects held up to the camera.\n\n"
    "Return ONLY a JSON object:\n"
    "{\n"
    '  "objectsDetected": ["objects and colors you see"],\n'
    '  "userAction": "what the learner is doing",\n'
    '  "isCorrect": true,\n'
    '  "feedback": "encouraging, specific feedback",\n'
    '  "confidence": 0.8\n'
    "}"
)


# ---------------------------------------------------------------------------
# Response handling
# ---------------------------------------------------------------------------

def clean_response_text(text: str) -> str:
    """Strip surrounding whitespace and markdown code fences."""
    text = (text or "").strip()
    if text.startswith("```"):
        first_newline = text.find("\n")
        text = text[first_newline + 1:] if first_newline != -1 else text[3:]
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def parse_classification(text: str) -> ClassificationResult:
    """
    Parse a model response into a ClassificationResult.

    Raises ValueError if the text is not JSON or lacks a boolean `isCorrect`
    and a non-empty `feedback`.
    """
    data = json.loads(clean_response_text(text))
    if not isinstance(data, dict):
        raise ValueError("Response is not a JSON object")

    is_correct = data.get("isCorrect")
    feedback = data.get("feedback")
    if not isinstance(is_correct, bool) or not feedback:
        raise ValueError("Invalid response structure - missing required fields")

    objects = data.get("objectsDetected") or []
    if isinstance(objects, str):
        objects = [objects]

    try:
        confidence = float(data.get("confidence", 0.0))
    except (TypeError, ValueError):
        confidence = 0.0

    return ClassificationResult(
        is_correct=is_correct,
        feedback=str(feedback),
        objects_detected=tuple(str(o) for o in objects),
        user_action=str(data.get("userAction") or ""),
        confidence=max(0.0, min(1.0, confidence)),
    )


def _first_color(text: str) -> Optional[str]:
    return next((color for color in COLORS if color in text), None)


def heuristic_classification(instruction: str, raw_text: str) -> ClassificationResult:
    """
    Deterministic verdict from keywords when the model's answer is unusable.

    Correct iff the first color named in the response equals the first color
    named in the instruction and the response mentions the action the
    instruction asks for (touch, point, hold/show).
    """
    text = (raw_text or "").lower()
    wanted = (instruction or "").lower()

    detected_color = _first_color(text)
    expected_color = _first_color(wanted)

    has_touch = any(word in text for word in ("touch", "finger", "hand"))
    has_point = "point" in text
    has_hold = any(word in text for word in ("hold", "showing"))

    expect_touch = "touch" in wanted
    expect_point = "point" in wanted
    expect_hold = "hold" in wanted or "show" in wanted

    color_match = detected_color == expected_color
    action_match = (
        (expect_touch and has_touch)
        or (expect_point and has_point)
        or (expect_hold and has_hold)
    )
    is_correct = color_match and action_match

    seen_action = "touching" if has_touch else "pointing to" if has_point else "showing"
    wanted_action = (
        "touch it" if expect_touch else "point to it" if expect_point else "hold it up"
    )
    color_word = detected_color or expected_color or "right"

    if is_correct:
        feedback = f"Great job! I can see you're {seen_action} the {color_word} object correctly!"
    elif color_match:
        feedback = f"I see the {color_word} object, but try to {wanted_action} as instructed."
    elif action_match:
        feedback = f"Good {seen_action} action! Now try to find the {expected_color or 'right'} object instead."
    else:
        feedback = (
            f"I can see you're trying! Look for the {expected_color or 'right'} object "
            f"and {wanted_action} as instructed."
        )

    if has_touch:
        user_action = "touching"
    elif has_point:
        user_action = "pointing to"
    elif has_hold:
        user_action = "holding"
    else:
        user_action = "showing"

    return ClassificationResult(
        is_correct=is_correct,
        feedback=feedback,
        objects_detected=(detected_color or "various objects",),
        user_action=f"{user_action} {detected_color or 'an object'}",
        confidence=HEURISTIC_CONFIDENCE,
        fallback=True,
    )


def map_api_error(error: Exception) -> ClassificationError:
    """Translate an OpenAI client exception into a ClassificationError."""
    if isinstance(error, openai.NotFoundError):
        kind = ClassificationErrorKind.NOT_AVAILABLE
    elif isinstance(error, (openai.PermissionDeniedError, openai.AuthenticationError)):
        kind = ClassificationErrorKind.ACCESS_DENIED
    elif isinstance(error, openai.RateLimitError):
        kind = ClassificationErrorKind.RATE_LIMITED
    elif isinstance(error, openai.APIStatusError):
        kind = {
            404: ClassificationErrorKind.NOT_AVAILABLE,
            401: ClassificationErrorKind.ACCESS_DENIED,
            403: ClassificationErrorKind.ACCESS_DENIED,
            429: ClassificationErrorKind.RATE_LIMITED,
        }.get(error.status_code, ClassificationErrorKind.OTHER)
    else:
        kind = ClassificationErrorKind.OTHER
    return ClassificationError(kind, f"AI analysis failed: {error}", cause=error)


# ---------------------------------------------------------------------------
# Image preparation
# ---------------------------------------------------------------------------

def prepare_image(image_bytes: bytes) -> str:
    """
    Normalize a camera frame for upload: RGB JPEG, longest side at most
    MAX_IMAGE_SIDE. Returns base64 text.
    """
    with Image.open(io.BytesIO(image_bytes)) as img:
        img = img.convert("RGB")
        img.thumbnail((MAX_IMAGE_SIDE, MAX_IMAGE_SIDE))
        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=JPEG_QUALITY)
    return base64.b64encode(buffer.getvalue()).decode("ascii")


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------

class OpenAIActionClassifier:
    """Action classifier backed by an OpenAI vision-capable chat model."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_VISION_MODEL,
        client: Optional[AsyncOpenAI] = None,
        timeout_s: float = 30.0,
    ):
        if client is None:
            if not api_key:
                raise ValueError("An OpenAI API key or client is required")
            client = AsyncOpenAI(api_key=api_key)
        self._client = client
        self.model = model
        self.timeout_s = timeout_s
        logger.env_success(f"Action classifier ready (model: {model})")

    def _build_messages(
        self, image_b64: str, instruction_text: str, expected_action: Interaction
    ) -> List[Dict[str, Any]]:
        return [
            {"role": "system", "content": CLASSIFY_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {
                        "type": "text",
                        "text": (
                            f"Current instruction: \"{instruction_text}\"\n"
                            f"Expected action: {json.dumps(expected_action.to_dict(), ensure_ascii=False)}\n"
                            "Set isCorrect to true only if the learner is doing what the instruction asks."
                        ),
                    },
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"},
                    },
                ],
            },
        ]

    async def classify(
        self, image: bytes, instruction_text: str, expected_action: Interaction
    ) -> ClassificationResult:
        logger.api(f"classify() - instruction: {instruction_text[:60]}")

        try:
            image_b64 = prepare_image(image)
        except (OSError, ValueError) as e:
            raise ClassificationError(
                ClassificationErrorKind.OTHER, f"Could not read camera frame: {e}", cause=e
            )

        logger.api_call("chat.completions.create (classify)", model=self.model)
        try:
            with Timer() as timer:
                completion = await self._client.chat.completions.create(
                    model=self.model,
                    response_format={"type": "json_object"},
                    messages=self._build_messages(image_b64, instruction_text, expected_action),
                    temperature=0.2,
                    max_tokens=400,
                    timeout=self.timeout_s,
                )
        except openai.OpenAIError as e:
            error = map_api_error(e)
            logger.api_error(f"Classification failed ({error.kind.value}): {e}")
            raise error
        logger.api_response("chat.completions.create", duration_ms=timer.duration_ms)

        raw = completion.choices[0].message.content or ""
        try:
            result = parse_classification(raw)
        except ValueError as e:
            logger.api_error(f"Unparseable classifier response ({e}), using keyword heuristic")
            logger.debug(f"Raw response: {raw[:200]}")
            return heuristic_classification(instruction_text, raw)

        logger.success(f"Classified: correct={result.is_correct}, confidence={result.confidence:.2f}")
        return result

    async def generate_hint(
        self, instruction_text: str, previous_attempts: Sequence[Dict[str, Any]]
    ) -> str:
        """Ask the model for a nudge that does not give the answer away."""
        logger.api_call("chat.completions.create (hint)", model=self.model)
        try:
            with Timer() as timer:
                completion = await self._client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {
                            "role": "system",
                            "content": (
                                "A learner is struggling with a hands-on task. Give one short, "
                                "encouraging, actionable hint that guides them toward success "
                                "without giving the answer away completely. Plain text only."
                            ),
                        },
                        {
                            "role": "user",
                            "content": json.dumps(
                                {"instruction": instruction_text, "previous_attempts": list(previous_attempts)},
                                ensure_ascii=False,
                            ),
                        },
                    ],
                    temperature=0.5,
                    max_tokens=150,
                    timeout=self.timeout_s,
                )
        except openai.OpenAIError as e:
            error = map_api_error(e)
            logger.api_error(f"Hint generation failed ({error.kind.value}): {e}")
            raise error
        logger.api_response("chat.completions.create", duration_ms=timer.duration_ms)

        hint = (completion.choices[0].message.content or "").strip()
        return hint or FALLBACK_HINT

    async def test_connection(self) -> bool:
        """Cheap round trip to check the key and model are usable."""
        logger.api("Testing classifier API connection...")
        try:
            completion = await self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": "Reply with 'API test successful'."}],
                max_tokens=10,
                timeout=self.timeout_s,
            )
        except openai.OpenAIError as e:
            logger.api_error(f"API test failed: {e}")
            return False
        logger.success(f"API test response: {completion.choices[0].message.content}")
        return True
