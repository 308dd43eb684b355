"""
AI Service - Anthropic client wrapper for story generation
Handles prompt validation, response caching, retries with backoff and cost accounting
"""
import asyncio
import logging
from typing import Optional, List, Any

import anthropic

from ..config import config
from ..exceptions import (
    ContentPolicyError,
    AIServiceError,
    AIRateLimitError,
    AIAuthenticationError,
    AIInvalidRequestError,
    AIUnavailableError,
)
from .llm_cache import LLMResponseCache, get_llm_cache
from .moderation_service import ModerationService, get_moderation_service

logger = logging.getLogger(__name__)


# USD per million tokens
INPUT_TOKEN_PRICE = 3.0
OUTPUT_TOKEN_PRICE = 15.0

RETRY_BASE_DELAY = 1.0
RETRY_MAX_DELAY = 10.0
NON_RETRYABLE_STATUS = {400, 401, 403, 422}

FOUNDATION_MAX_TOKENS = 3000
CHAPTER_MAX_TOKENS = 6000
PREVIOUS_CHAPTER_CONTEXT_CHARS = 500

STORY_SYSTEM_PROMPT = (
    "You are a skilled fiction author and story architect. "
    "Write vivid, original prose suitable for a general audience and follow the requested format exactly."
)


def calculate_cost(input_tokens: int, output_tokens: int) -> float:
    """USD cost of a request from token usage"""
    cost = (input_tokens / 1_000_000) * INPUT_TOKEN_PRICE + (output_tokens / 1_000_000) * OUTPUT_TOKEN_PRICE
    return round(cost, 6)


class AIResult:
    """Outcome of a single generation call"""

    def __init__(
        self,
        content: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
        cost_usd: float = 0.0,
        from_cache: bool = False,
        model: Optional[str] = None
    ):
        self.content = content
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.cost_usd = cost_usd
        self.from_cache = from_cache
        self.model = model

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cost_usd": self.cost_usd,
            "from_cache": self.from_cache,
            "model": self.model,
        }


class AIService:
    """
    Anthropic-backed generation service

    The client is created on first use so the service can be constructed
    (and injected) without an API key.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        model: Optional[str] = None,
        cache: Optional[LLMResponseCache] = None,
        moderation: Optional[ModerationService] = None,
        max_retries: Optional[int] = None,
        max_prompt_length: Optional[int] = None
    ):
        self._client = client
        self.model = model or config.ANTHROPIC_MODEL
        self.cache = cache if cache is not None else get_llm_cache()
        self.moderation = moderation or get_moderation_service()
        self.max_retries = max_retries or config.AI_MAX_RETRIES
        self.max_prompt_length = max_prompt_length or config.AI_MAX_PROMPT_LENGTH

    @property
    def client(self):
        if self._client is None:
            if not config.ANTHROPIC_API_KEY:
                raise AIUnavailableError("AI service is not configured")
            # Retries are handled here so backoff and error mapping stay in one place
            self._client = anthropic.AsyncAnthropic(
                api_key=config.ANTHROPIC_API_KEY,
                timeout=config.AI_REQUEST_TIMEOUT,
                max_retries=0,
            )
        return self._client

    def _validate_prompt(self, prompt: str):
        if not prompt or not prompt.strip():
            raise AIInvalidRequestError("Prompt cannot be empty")
        if len(prompt) > self.max_prompt_length:
            raise AIInvalidRequestError(
                f"Prompt exceeds maximum length of {self.max_prompt_length} characters",
                details={"max_length": self.max_prompt_length, "length": len(prompt)},
            )
        if self.moderation.detect_prompt_injection(prompt):
            logger.warning("Rejected prompt: potential prompt injection")
            raise ContentPolicyError(
                "Request contains disallowed instructions",
                details={"reasons": ["potential prompt injection"]},
            )

    @staticmethod
    def _map_error(error: Exception) -> AIServiceError:
        """Translate SDK errors into service errors"""
        if isinstance(error, anthropic.APIStatusError):
            status_code = error.status_code
            if status_code == 429:
                retry_after = None
                if error.response is not None:
                    retry_after = error.response.headers.get("retry-after")
                details = {"retry_after": int(retry_after)} if retry_after and retry_after.isdigit() else {}
                return AIRateLimitError("AI service is rate limited. Please try again shortly.", details=details)
            if status_code in (401, 403):
                return AIAuthenticationError("AI service authentication failed")
            if status_code in (400, 422):
                return AIInvalidRequestError(f"AI service rejected the request: {error.message}")
            return AIUnavailableError(f"AI service error (HTTP {status_code})")
        if isinstance(error, anthropic.APITimeoutError):
            return AIUnavailableError("AI service timed out")
        if isinstance(error, anthropic.APIConnectionError):
            return AIUnavailableError("AI service is unreachable")
        return AIUnavailableError(f"AI service error: {error}")

    async def _create_message(self, **kwargs):
        """Call the API with exponential backoff on retryable failures"""
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                return await self.client.messages.create(**kwargs)
            except anthropic.APIStatusError as e:
                if e.status_code in NON_RETRYABLE_STATUS:
                    logger.error(f"AI request failed with non-retryable status {e.status_code}")
                    raise self._map_error(e) from e
                last_error = e
            except anthropic.APIConnectionError as e:
                # Also covers APITimeoutError
                last_error = e

            if attempt < self.max_retries:
                delay = min(RETRY_BASE_DELAY * (2 ** (attempt - 1)), RETRY_MAX_DELAY)
                logger.warning(
                    f"AI request attempt {attempt}/{self.max_retries} failed "
                    f"({type(last_error).__name__}), retrying in {delay}s"
                )
                await asyncio.sleep(delay)

        logger.error(f"AI request failed after {self.max_retries} attempts: {last_error}")
        raise self._map_error(last_error) from last_error

    async def generate_content(
        self,
        prompt: str,
        operation: str,
        max_tokens: int = 4000,
        temperature: float = 0.7,
        system_prompt: Optional[str] = STORY_SYSTEM_PROMPT,
        use_cache: bool = True
    ) -> AIResult:
        """
        Generate text for a prompt

        Args:
            prompt: User prompt
            operation: Operation type (foundation, chapter, character, improvement, analysis)
            max_tokens: Maximum output tokens
            temperature: Sampling temperature
            system_prompt: Optional system prompt
            use_cache: Whether to consult and populate the response cache

        Returns:
            AIResult

        Raises:
            AIServiceError subclasses on API failure, ContentPolicyError on blocked input/output
        """
        self._validate_prompt(prompt)

        cache_key = LLMResponseCache.get_cache_key(
            prompt, self.model, max_tokens, temperature, system_prompt, operation
        )
        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"LLM cache hit for {operation} (key={cache_key})")
                return AIResult(
                    content=cached["content"],
                    input_tokens=cached["input_tokens"],
                    output_tokens=cached["output_tokens"],
                    cost_usd=cached["cost_usd"],
                    from_cache=True,
                    model=self.model,
                )

        request = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            request["system"] = system_prompt

        response = await self._create_message(**request)

        content = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )
        if not content.strip():
            raise AIUnavailableError("AI service returned an empty response")

        moderation = self.moderation.moderate(content)
        if not moderation.passed:
            raise ContentPolicyError(
                "Generated content did not pass moderation",
                details={"reasons": moderation.reasons, "severity": moderation.severity},
            )

        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        cost = calculate_cost(input_tokens, output_tokens)
        logger.info(
            f"AI {operation} generated: {input_tokens} in / {output_tokens} out tokens, ${cost:.6f}"
        )

        if use_cache:
            self.cache.set(
                cache_key,
                content,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cost_usd=cost,
                operation=operation,
            )

        return AIResult(
            content=content,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost,
            from_cache=False,
            model=self.model,
        )

    async def generate_story_foundation(self, title: str, genre: str, premise: str) -> AIResult:
        """Story bible as JSON: setting, characters, themes and chapter outline"""
        title_clause = f' titled "{title}"' if title else ""
        prompt = (
            f"Create a story foundation for a {genre} story{title_clause}.\n\n"
            f"Premise: {premise}\n\n"
            "Respond with a JSON object containing these keys:\n"
            '- "title": a compelling title\n'
            '- "setting": time, place and atmosphere\n'
            '- "main_characters": list of objects with "name", "role", "description"\n'
            '- "themes": list of central themes\n'
            '- "plot_outline": list of chapter summaries\n'
            '- "tone": the narrative voice\n'
            "Return only the JSON object."
        )
        return await self.generate_content(
            prompt,
            operation="foundation",
            max_tokens=FOUNDATION_MAX_TOKENS,
            temperature=0.8,
        )

    async def generate_chapter(
        self,
        story,
        chapter_number: int,
        previous_chapters: Optional[List] = None,
        target_words: int = 2000
    ) -> AIResult:
        """Write the next chapter with context from the foundation and earlier chapters"""
        previous_chapters = previous_chapters or []
        context_parts = []

        summaries = [
            f"Chapter {ch.chapter_number}: {ch.summary}"
            for ch in previous_chapters
            if ch.summary
        ]
        if summaries:
            context_parts.append("Previous chapter summaries:\n" + "\n".join(summaries))

        if previous_chapters:
            last = previous_chapters[-1]
            tail = (last.content or "")[-PREVIOUS_CHAPTER_CONTEXT_CHARS:]
            if tail:
                context_parts.append(f"The previous chapter ended with:\n...{tail}")

        foundation = story.foundation or {}
        prompt = (
            f"Write chapter {chapter_number} of the {story.genre} story \"{story.title}\".\n\n"
            f"Premise: {story.premise}\n\n"
            f"Story foundation: {foundation}\n\n"
            + ("\n\n".join(context_parts) + "\n\n" if context_parts else "")
            + f"Write approximately {target_words} words. Begin with a chapter title on the first line, "
            "then the chapter text. Keep characters and continuity consistent."
        )
        return await self.generate_content(
            prompt,
            operation="chapter",
            max_tokens=CHAPTER_MAX_TOKENS,
            temperature=0.8,
        )

    async def generate_characters(self, story, count: int = 3) -> AIResult:
        """Character profiles as a JSON list"""
        prompt = (
            f"Create {count} characters for the {story.genre} story \"{story.title}\".\n\n"
            f"Premise: {story.premise}\n\n"
            "Respond with a JSON array where each item has "
            '"name", "role", "personality", "backstory", "motivation" and "arc". '
            "Return only the JSON array."
        )
        return await self.generate_content(prompt, operation="character", max_tokens=2000, temperature=0.8)

    def _fit_content(self, prefix: str, content: str, suffix: str = "") -> str:
        """Trim content so the full prompt stays within the prompt length limit"""
        budget = max(self.max_prompt_length - len(prefix) - len(suffix), 0)
        return prefix + content[:budget] + suffix

    async def improve_content(self, content: str, instructions: Optional[str] = None) -> AIResult:
        """Rewrite a passage, optionally following editor instructions"""
        prefix = (
            "Improve the following passage. Strengthen prose, pacing and dialogue while keeping "
            "the plot and voice intact.\n\n"
            + (f"Editor notes: {instructions}\n\n" if instructions else "")
            + "Passage:\n"
        )
        prompt = self._fit_content(prefix, content, "\n\nReturn only the improved passage.")
        return await self.generate_content(prompt, operation="improvement", max_tokens=4000, temperature=0.6)

    async def analyze_content(self, content: str) -> AIResult:
        """Editorial analysis as JSON"""
        prefix = (
            "Analyze the following story text. Respond with a JSON object containing "
            '"strengths", "weaknesses", "pacing", "character_development", "suggestions" '
            'and an overall "score" from 1 to 10.\n\n'
            "Text:\n"
        )
        return await self.generate_content(
            self._fit_content(prefix, content), operation="analysis", max_tokens=2000, temperature=0.3
        )


_ai_service: Optional[AIService] = None


def get_ai_service() -> AIService:
    """Get or create global AI service instance"""
    global _ai_service
    if _ai_service is None:
        _ai_service = AIService()
    return _ai_service
