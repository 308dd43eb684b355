"""
Story Service - Story creation, AI generation and reader purchases
Every AI operation is priced from the operation cost table and charged in credits
"""
from typing import Optional, Dict, Any, List
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
import json
import math
import re
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db.models.user import User, CreatorTier
from ..db.models.story import (
    Story,
    Chapter,
    GenerationLog,
    StoryPurchase,
    StoryStatus,
    PurchaseType,
    OperationType,
)
from ..db.models.creator import EarningSource
from ..db.models.credits import Payment, PaymentStatus
from ..exceptions import (
    InfinitePagesError,
    InsufficientCreditsError,
    NotFoundError,
    ConflictError,
    ContentPolicyError,
    SubscriptionRequiredError,
)
from .ai_service import AIService, AIResult
from .billing_gateway import BillingGateway
from .billing_service import ensure_customer
from .credit_service import CreditService
from .creator_service import record_creator_earning
from .moderation_service import ModerationService, get_moderation_service
from .plan_policy import (
    PlanPolicy,
    COMPLEXITY_LEVELS,
    CREATOR_REVENUE_SHARE,
    DEFAULT_PRICE_PER_CHAPTER,
    DEFAULT_BUNDLE_DISCOUNT,
    DEFAULT_PREMIUM_UNLOCK_PRICE,
    get_operation_cost,
    apply_cache_discount,
    credits_to_usd,
)

logger = logging.getLogger(__name__)

ALLOWED_GENRES = (
    "fantasy", "mystery", "romance", "sci-fi", "adventure",
    "thriller", "horror", "historical", "literary", "young-adult",
)
MAX_TITLE_LENGTH = 200
MIN_PREMISE_LENGTH = 10
MAX_PREMISE_LENGTH = 2000
MAX_CONTENT_LENGTH = 50000

# Reader purchases get a discount on stories with heavy recent generation activity
POPULAR_STORY_GENERATIONS = 3
POPULAR_STORY_WINDOW_HOURS = 24
POPULAR_STORY_DISCOUNT = 0.2


def _count_words(text: str) -> int:
    return len(re.findall(r"\S+", text or ""))


def _parse_json(content: str):
    """Parse a JSON response, tolerating markdown code fences"""
    text = content.strip()
    fenced = re.match(r"^```(?:json)?\s*(.*?)\s*```$", text, re.S)
    if fenced:
        text = fenced.group(1)
    return json.loads(text)


class StoryService:
    """Service for stories, chapters and reader access"""

    def __init__(
        self,
        db: Session,
        ai_service: Optional[AIService] = None,
        moderation: Optional[ModerationService] = None
    ):
        self.db = db
        self.ai = ai_service
        self.moderation = moderation or get_moderation_service()
        self.credits = CreditService(db)

    # Validation helpers

    def _validate_complexity(self, complexity: str) -> str:
        if complexity not in COMPLEXITY_LEVELS:
            raise InfinitePagesError(
                f"Invalid complexity '{complexity}'. Must be one of: {', '.join(COMPLEXITY_LEVELS)}",
                code="INVALID_COMPLEXITY",
            )
        return complexity

    def _validate_story_input(self, title: Optional[str], genre: str, premise: str) -> Dict[str, Any]:
        errors = []
        title = (title or "").strip()
        genre = (genre or "").strip().lower()
        premise = (premise or "").strip()

        if len(title) > MAX_TITLE_LENGTH:
            errors.append(f"Title must be at most {MAX_TITLE_LENGTH} characters")
        if not genre:
            errors.append("Genre is required")
        elif genre not in ALLOWED_GENRES:
            errors.append(f"Genre must be one of: {', '.join(ALLOWED_GENRES)}")
        if len(premise) < MIN_PREMISE_LENGTH:
            errors.append(f"Premise must be at least {MIN_PREMISE_LENGTH} characters")
        elif len(premise) > MAX_PREMISE_LENGTH:
            errors.append(f"Premise must be at most {MAX_PREMISE_LENGTH} characters")

        if errors:
            raise InfinitePagesError("Invalid story input", code="VALIDATION_ERROR", details={"errors": errors})

        return {
            "title": self.moderation.sanitize_input(title, MAX_TITLE_LENGTH),
            "genre": genre,
            "premise": self.moderation.sanitize_input(premise, MAX_PREMISE_LENGTH),
        }

    def _moderate_input(self, text: str):
        result = self.moderation.moderate(text)
        if not result.passed:
            raise ContentPolicyError(
                "Content does not meet our content policy",
                details={"reasons": result.reasons, "severity": result.severity},
            )

    def _require_subscription(self, user: User) -> PlanPolicy:
        policy = PlanPolicy(self.db, user)
        if not policy.has_active_subscription():
            raise SubscriptionRequiredError(
                "An active subscription is required to generate stories",
                details={"subscription_status": user.subscription_status},
            )
        return policy

    def _precheck_credits(self, user: User, cost: int):
        self.db.refresh(user)
        if user.credits_balance < cost:
            raise InsufficientCreditsError(required=cost, available=user.credits_balance)

    def _owned_story(self, user: User, story_id: int) -> Story:
        story = self.db.query(Story).filter(Story.id == story_id, Story.user_id == user.id).first()
        if not story:
            raise NotFoundError("Story not found")
        return story

    # Charging

    def _charge(
        self,
        user: User,
        operation: OperationType,
        complexity: str,
        result: AIResult,
        story: Optional[Story] = None,
        chapter: Optional[Chapter] = None,
        description: Optional[str] = None
    ) -> int:
        """Charge credits for an AI call and record it; caller commits"""
        cost = get_operation_cost(operation.value, complexity)
        charged = apply_cache_discount(cost) if result.from_cache else cost

        self.credits.spend_credits(
            user,
            charged,
            description=description or f"{operation.value.capitalize()} generation",
            reference_id=str(story.id) if story and story.id else None,
            reference_type="story" if story else None,
            metadata={
                "operation": operation.value,
                "complexity": complexity,
                "base_cost": cost,
                "from_cache": result.from_cache,
            },
            commit=False,
        )

        if result.from_cache:
            user.cache_hits += 1
            user.cache_discount_earned += cost - charged

        user.tokens_used_total += result.total_tokens
        words = _count_words(result.content)
        user.words_generated += words

        self.db.add(GenerationLog(
            user_id=user.id,
            story_id=story.id if story else None,
            chapter_id=chapter.id if chapter else None,
            operation_type=operation.value,
            tokens_input=result.input_tokens,
            tokens_output=result.output_tokens,
            cost_usd=Decimal(str(result.cost_usd)),
            credits_charged=charged,
            from_cache=result.from_cache,
        ))

        if story is not None:
            story.total_tokens_used += result.total_tokens
            story.total_cost_usd = Decimal(str(story.total_cost_usd or 0)) + Decimal(str(result.cost_usd))

        return charged

    # Stories

    async def create_story(
        self,
        user: User,
        title: Optional[str],
        genre: str,
        premise: str,
        complexity: str = "medium"
    ) -> Dict[str, Any]:
        """Create a story and generate its foundation"""
        complexity = self._validate_complexity(complexity)
        data = self._validate_story_input(title, genre, premise)

        policy = self._require_subscription(user)
        policy.check_story_limit()

        cost = get_operation_cost(OperationType.FOUNDATION.value, complexity)
        self._precheck_credits(user, cost)
        self._moderate_input(data["premise"] + "\n" + data["title"])

        result = await self.ai.generate_story_foundation(data["title"], data["genre"], data["premise"])

        try:
            foundation = _parse_json(result.content)
            if not isinstance(foundation, dict):
                foundation = {"content": foundation}
        except ValueError:
            logger.warning("Story foundation was not valid JSON, storing raw response")
            foundation = {"content": result.content, "raw_response": True}

        story = Story(
            user_id=user.id,
            title=data["title"] or foundation.get("title") or "Untitled Story",
            genre=data["genre"],
            premise=data["premise"],
            foundation=foundation,
            status=StoryStatus.DRAFT.value,
            total_tokens_used=0,
            total_cost_usd=Decimal("0"),
        )
        self.db.add(story)
        self.db.flush()

        charged = self._charge(user, OperationType.FOUNDATION, complexity, result, story=story,
                               description=f"Story foundation: {story.title}")
        user.stories_created += 1

        self.db.commit()
        self.db.refresh(story)
        self.db.refresh(user)

        logger.info(f"User {user.id} created story {story.id} ({charged} credits, cache={result.from_cache})")
        return {
            "story": self.serialize_story(story),
            "credits_used": charged,
            "remaining_credits": user.credits_balance,
            "from_cache": result.from_cache,
            "message": "Story created successfully",
        }

    def list_stories(self, user: User) -> List[Dict[str, Any]]:
        stories = self.db.query(Story).filter(
            Story.user_id == user.id
        ).order_by(Story.updated_at.desc(), Story.id.desc()).all()
        return [self.serialize_story(story, include_chapter_summaries=True) for story in stories]

    def get_story(self, user: User, story_id: int) -> Dict[str, Any]:
        story = self._owned_story(user, story_id)
        return self.serialize_story(story, include_chapters=True)

    # Generation

    async def generate_chapter(
        self,
        user: User,
        story_id: int,
        chapter_number: Optional[int] = None,
        title: Optional[str] = None,
        complexity: str = "medium",
        target_words: int = 2000
    ) -> Dict[str, Any]:
        """Generate and store the next (or a given) chapter"""
        complexity = self._validate_complexity(complexity)
        story = self._owned_story(user, story_id)
        self._require_subscription(user)

        cost = get_operation_cost(OperationType.CHAPTER.value, complexity)
        self._precheck_credits(user, cost)

        chapter_number = chapter_number or story.chapter_count + 1
        exists = self.db.query(Chapter.id).filter(
            Chapter.story_id == story.id,
            Chapter.chapter_number == chapter_number,
        ).first()
        if exists:
            raise ConflictError(
                f"Chapter {chapter_number} already exists",
                details={"chapter_number": chapter_number},
            )

        previous = [ch for ch in story.chapters if ch.chapter_number < chapter_number]
        result = await self.ai.generate_chapter(story, chapter_number, previous, target_words=target_words)

        content = result.content.strip()
        lines = content.split("\n", 1)
        generated_title = lines[0].strip().strip("#*").strip() if lines else ""
        if len(lines) > 1 and generated_title and len(generated_title) <= MAX_TITLE_LENGTH:
            body = lines[1].strip()
        else:
            generated_title, body = "", content

        chapter_title = (title or "").strip() or generated_title or f"Chapter {chapter_number}"
        word_count = _count_words(body)
        summary = body[:300].rsplit(" ", 1)[0] + "..." if len(body) > 300 else body

        chapter = Chapter(
            story_id=story.id,
            chapter_number=chapter_number,
            title=self.moderation.sanitize_input(chapter_title, MAX_TITLE_LENGTH),
            content=body,
            summary=summary,
            word_count=word_count,
            tokens_input=result.input_tokens,
            tokens_output=result.output_tokens,
            generation_cost_usd=Decimal(str(result.cost_usd)),
            prompt_type=OperationType.CHAPTER.value,
        )
        self.db.add(chapter)
        self.db.flush()

        story.chapter_count = max(story.chapter_count, chapter_number)
        story.word_count += word_count
        if story.status == StoryStatus.DRAFT.value:
            story.status = StoryStatus.IN_PROGRESS.value
        story.updated_at = datetime.utcnow()

        charged = self._charge(user, OperationType.CHAPTER, complexity, result, story=story, chapter=chapter,
                               description=f"Chapter {chapter_number}: {story.title}")

        self.db.commit()
        self.db.refresh(chapter)
        self.db.refresh(user)

        logger.info(f"User {user.id} generated chapter {chapter_number} of story {story.id} ({charged} credits)")
        return {
            "chapter": self.serialize_chapter(chapter, include_content=True),
            "credits_used": charged,
            "remaining_credits": user.credits_balance,
            "from_cache": result.from_cache,
        }

    async def generate_characters(
        self,
        user: User,
        story_id: int,
        count: int = 3,
        complexity: str = "medium"
    ) -> Dict[str, Any]:
        complexity = self._validate_complexity(complexity)
        story = self._owned_story(user, story_id)
        self._require_subscription(user)
        self._precheck_credits(user, get_operation_cost(OperationType.CHARACTER.value, complexity))

        result = await self.ai.generate_characters(story, count)
        try:
            characters = _parse_json(result.content)
            if isinstance(characters, dict):
                characters = characters.get("characters", [characters])
        except ValueError:
            logger.warning("Character response was not valid JSON, storing raw response")
            characters = [{"content": result.content, "raw_response": True}]

        story.characters = (story.characters or []) + list(characters)
        story.updated_at = datetime.utcnow()
        charged = self._charge(user, OperationType.CHARACTER, complexity, result, story=story,
                               description=f"Characters: {story.title}")
        self.db.commit()
        self.db.refresh(user)

        return {
            "characters": characters,
            "credits_used": charged,
            "remaining_credits": user.credits_balance,
            "from_cache": result.from_cache,
        }

    async def improve_content(
        self,
        user: User,
        story_id: int,
        content: str,
        instructions: Optional[str] = None,
        complexity: str = "medium"
    ) -> Dict[str, Any]:
        complexity = self._validate_complexity(complexity)
        story = self._owned_story(user, story_id)
        self._require_subscription(user)

        if not content or not content.strip():
            raise InfinitePagesError("Content is required", code="VALIDATION_ERROR")
        if len(content) > MAX_CONTENT_LENGTH:
            raise InfinitePagesError(
                f"Content must be at most {MAX_CONTENT_LENGTH} characters", code="VALIDATION_ERROR"
            )

        self._precheck_credits(user, get_operation_cost(OperationType.IMPROVEMENT.value, complexity))
        self._moderate_input(content + "\n" + (instructions or ""))

        result = await self.ai.improve_content(content, instructions)
        charged = self._charge(user, OperationType.IMPROVEMENT, complexity, result, story=story,
                               description=f"Content improvement: {story.title}")
        self.db.commit()
        self.db.refresh(user)

        return {
            "improved_content": result.content,
            "credits_used": charged,
            "remaining_credits": user.credits_balance,
            "from_cache": result.from_cache,
        }

    async def analyze_story(
        self,
        user: User,
        story_id: int,
        content: Optional[str] = None,
        complexity: str = "medium"
    ) -> Dict[str, Any]:
        complexity = self._validate_complexity(complexity)
        story = self._owned_story(user, story_id)
        self._require_subscription(user)

        if not content:
            content = "\n\n".join(ch.content for ch in story.chapters if ch.content)
        if not content or not content.strip():
            raise InfinitePagesError("Story has no content to analyze", code="NO_CONTENT")
        content = content[:MAX_CONTENT_LENGTH]

        self._precheck_credits(user, get_operation_cost(OperationType.ANALYSIS.value, complexity))
        result = await self.ai.analyze_content(content)

        try:
            analysis = _parse_json(result.content)
        except ValueError:
            analysis = {"content": result.content, "raw_response": True}

        charged = self._charge(user, OperationType.ANALYSIS, complexity, result, story=story,
                               description=f"Story analysis: {story.title}")
        self.db.commit()
        self.db.refresh(user)

        return {
            "analysis": analysis,
            "credits_used": charged,
            "remaining_credits": user.credits_balance,
            "from_cache": result.from_cache,
        }

    # Publishing and reader access

    def publish_story(self, user: User, story_id: int, pricing: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Publish a story for readers and make the author a creator"""
        story = self._owned_story(user, story_id)
        if story.chapter_count < 1:
            raise InfinitePagesError("A story needs at least one chapter before publishing", code="NO_CHAPTERS")

        pricing = pricing or {}
        price_per_chapter = pricing.get("price_per_chapter")
        bundle_discount = pricing.get("bundle_discount")
        premium_unlock_price = pricing.get("premium_unlock_price")

        story.price_per_chapter = DEFAULT_PRICE_PER_CHAPTER if price_per_chapter is None else price_per_chapter
        story.bundle_discount = DEFAULT_BUNDLE_DISCOUNT if bundle_discount is None else bundle_discount
        story.premium_unlock_price = (
            DEFAULT_PREMIUM_UNLOCK_PRICE if premium_unlock_price is None else premium_unlock_price
        )
        if pricing.get("price_usd") is not None:
            story.price_usd = Decimal(str(pricing["price_usd"]))

        story.is_published = True
        story.status = StoryStatus.PUBLISHED.value
        story.updated_at = datetime.utcnow()

        if not user.is_creator:
            user.is_creator = True
            user.creator_tier = user.creator_tier or CreatorTier.BRONZE.value

        self.db.commit()
        self.db.refresh(story)
        logger.info(f"Story {story.id} published by user {user.id}")
        return self.serialize_story(story)

    def _unlocked_chapters(self, reader: User, story: Story) -> set:
        purchases = self.db.query(StoryPurchase).filter(
            StoryPurchase.user_id == reader.id,
            StoryPurchase.story_id == story.id,
        ).all()
        unlocked = set()
        for purchase in purchases:
            unlocked.update(purchase.chapters_unlocked or [])
        return unlocked

    def _recent_generation_count(self, story: Story) -> int:
        since = datetime.utcnow() - timedelta(hours=POPULAR_STORY_WINDOW_HOURS)
        return self.db.query(func.count(GenerationLog.id)).filter(
            GenerationLog.story_id == story.id,
            GenerationLog.created_at >= since,
        ).scalar() or 0

    def purchase_access(
        self,
        reader: User,
        story_id: int,
        chapter_numbers: Optional[List[int]] = None,
        purchase_type: str = PurchaseType.CHAPTER.value
    ) -> Dict[str, Any]:
        """
        Unlock chapters of a published story with credits

        Raises:
            NotFoundError: story missing or unpublished
            InsufficientCreditsError: balance too low
        """
        story = self.db.query(Story).filter(Story.id == story_id, Story.is_published == True).first()  # noqa: E712
        if not story:
            raise NotFoundError("Story not found")

        if purchase_type not in [p.value for p in PurchaseType]:
            raise InfinitePagesError(f"Invalid purchase type: {purchase_type}", code="INVALID_PURCHASE_TYPE")

        available = [ch.chapter_number for ch in story.chapters]
        if purchase_type == PurchaseType.PREMIUM_UNLOCK.value:
            requested = available
        else:
            requested = sorted(set(chapter_numbers or []))
            if not requested:
                raise InfinitePagesError("No chapters selected", code="VALIDATION_ERROR")
            unknown = [n for n in requested if n not in available]
            if unknown:
                raise NotFoundError("Chapter not found", details={"chapters": unknown})

        if story.user_id == reader.id:
            return {"access_granted": True, "chapters_unlocked": available, "credits_spent": 0,
                    "message": "Authors always have access to their own stories"}

        already = self._unlocked_chapters(reader, story)
        new_chapters = [n for n in requested if n not in already]
        if not new_chapters:
            return {
                "access_granted": True,
                "chapters_unlocked": sorted(already),
                "credits_spent": 0,
                "message": "You already have access to these chapters",
            }

        if purchase_type == PurchaseType.CHAPTER.value:
            cost = story.price_per_chapter * len(new_chapters)
        elif purchase_type == PurchaseType.BUNDLE.value:
            full_price = Decimal(story.price_per_chapter * len(new_chapters))
            discounted = full_price * (100 - story.bundle_discount) / 100
            cost = int(discounted.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        else:
            cost = story.premium_unlock_price

        cache_discount = 0
        if self._recent_generation_count(story) > POPULAR_STORY_GENERATIONS:
            cache_discount = math.floor(cost * POPULAR_STORY_DISCOUNT)
            cost -= cache_discount

        self.db.refresh(reader)
        if reader.credits_balance < cost:
            raise InsufficientCreditsError(required=cost, available=reader.credits_balance)

        self.credits.spend_credits(
            reader,
            cost,
            description=f"Unlocked {len(new_chapters)} chapter(s) of {story.title}",
            reference_id=str(story.id),
            reference_type="story_purchase",
            metadata={"purchase_type": purchase_type, "chapters": new_chapters, "cache_discount": cache_discount},
            commit=False,
        )

        purchase = StoryPurchase(
            user_id=reader.id,
            story_id=story.id,
            creator_id=story.user_id,
            purchase_type=purchase_type,
            chapters_unlocked=new_chapters,
            credits_spent=cost,
            cache_discount=cache_discount,
        )
        self.db.add(purchase)

        creator = self.db.query(User).filter(User.id == story.user_id).first()
        creator_credits = math.floor(cost * CREATOR_REVENUE_SHARE)
        if creator and creator_credits > 0:
            record_creator_earning(
                self.db,
                creator,
                credits_to_usd(creator_credits),
                story_id=story.id,
                reader_id=reader.id,
                credits_earned=creator_credits,
                source=EarningSource.CREDITS,
            )

        self.db.commit()
        self.db.refresh(reader)
        logger.info(f"User {reader.id} unlocked {len(new_chapters)} chapters of story {story.id} for {cost} credits")

        return {
            "access_granted": True,
            "purchase_id": purchase.id,
            "chapters_unlocked": sorted(already | set(new_chapters)),
            "credits_spent": cost,
            "cache_discount": cache_discount,
            "remaining_credits": reader.credits_balance,
            "creator_earnings": creator_credits,
        }

    def create_story_checkout(self, reader: User, story_id: int, gateway: BillingGateway) -> Dict[str, Any]:
        """Card payment for a whole story through Stripe"""
        story = self.db.query(Story).filter(Story.id == story_id, Story.is_published == True).first()  # noqa: E712
        if not story:
            raise NotFoundError("Story not found")
        if not story.price_usd or Decimal(story.price_usd) <= 0:
            raise InfinitePagesError("This story is not available for direct purchase", code="STORY_NOT_PRICED")

        customer_id = ensure_customer(self.db, gateway, reader)
        amount_cents = int((Decimal(story.price_usd) * 100).quantize(Decimal("1")))
        intent = gateway.create_payment_intent(
            amount_cents=amount_cents,
            currency="usd",
            customer_id=customer_id,
            metadata={
                "story_id": str(story.id),
                "creator_id": str(story.user_id),
                "user_id": str(reader.id),
                "type": "story_purchase",
            },
        )
        self.db.add(Payment(
            user_id=reader.id,
            stripe_payment_intent_id=intent["payment_intent_id"],
            stripe_customer_id=customer_id,
            story_id=story.id,
            amount_usd=story.price_usd,
            status=PaymentStatus.PENDING.value,
        ))
        self.db.commit()
        return {
            "client_secret": intent["client_secret"],
            "payment_intent_id": intent["payment_intent_id"],
            "amount_usd": float(story.price_usd),
        }

    # Serialization

    @staticmethod
    def serialize_chapter(chapter: Chapter, include_content: bool = False) -> Dict[str, Any]:
        data = {
            "id": chapter.id,
            "chapter_number": chapter.chapter_number,
            "title": chapter.title,
            "summary": chapter.summary,
            "word_count": chapter.word_count,
            "created_at": chapter.created_at.isoformat() if chapter.created_at else None,
        }
        if include_content:
            data["content"] = chapter.content
        return data

    def serialize_story(
        self,
        story: Story,
        include_chapters: bool = False,
        include_chapter_summaries: bool = False
    ) -> Dict[str, Any]:
        data = {
            "id": story.id,
            "title": story.title,
            "genre": story.genre,
            "premise": story.premise,
            "foundation": story.foundation,
            "characters": story.characters or [],
            "status": story.status,
            "word_count": story.word_count,
            "chapter_count": story.chapter_count,
            "total_tokens_used": story.total_tokens_used,
            "total_cost_usd": float(story.total_cost_usd or 0),
            "is_published": story.is_published,
            "pricing": {
                "price_per_chapter": story.price_per_chapter,
                "bundle_discount": story.bundle_discount,
                "premium_unlock_price": story.premium_unlock_price,
                "price_usd": float(story.price_usd) if story.price_usd is not None else None,
            },
            "created_at": story.created_at.isoformat() if story.created_at else None,
            "updated_at": story.updated_at.isoformat() if story.updated_at else None,
        }
        if include_chapters:
            data["chapters"] = [self.serialize_chapter(ch, include_content=True) for ch in story.chapters]
        elif include_chapter_summaries:
            data["chapters"] = [self.serialize_chapter(ch) for ch in story.chapters]
        return data
