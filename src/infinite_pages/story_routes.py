"""
Story API routes - creation, AI generation, publishing and reader access
"""
import logging
from typing import Optional, List

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .auth import get_current_user
from .db.engine import get_db
from .db.models.user import User
from .db.models.story import PurchaseType
from .services.ai_service import AIService, get_ai_service
from .services.billing_gateway import BillingGateway, get_gateway
from .services.story_service import StoryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stories", tags=["stories"])


class CreateStoryRequest(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    genre: str
    premise: str
    complexity: str = "medium"


class GenerateChapterRequest(BaseModel):
    chapter_number: Optional[int] = Field(None, ge=1)
    title: Optional[str] = Field(None, max_length=200)
    complexity: str = "medium"
    target_words: int = Field(2000, ge=200, le=8000)


class GenerateCharactersRequest(BaseModel):
    count: int = Field(3, ge=1, le=10)
    complexity: str = "medium"


class ImproveContentRequest(BaseModel):
    content: str
    instructions: Optional[str] = Field(None, max_length=2000)
    complexity: str = "medium"


class AnalyzeStoryRequest(BaseModel):
    content: Optional[str] = None
    complexity: str = "medium"


class PublishStoryRequest(BaseModel):
    """Pricing in credits; price_usd enables direct card purchase"""
    price_per_chapter: Optional[int] = Field(None, ge=0)
    bundle_discount: Optional[int] = Field(None, ge=0, le=100)
    premium_unlock_price: Optional[int] = Field(None, ge=0)
    price_usd: Optional[float] = Field(None, ge=0)


class ReadAccessRequest(BaseModel):
    chapter_numbers: Optional[List[int]] = None
    purchase_type: PurchaseType = PurchaseType.CHAPTER


def _story_service(db: Session, ai: Optional[AIService] = None) -> StoryService:
    return StoryService(db, ai_service=ai)


@router.post("", status_code=status.HTTP_201_CREATED)
@router.post("/", status_code=status.HTTP_201_CREATED, include_in_schema=False)
async def create_story(
    request: CreateStoryRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ai: AIService = Depends(get_ai_service)
):
    """Create a story and generate its foundation (charged in credits)"""
    return await _story_service(db, ai).create_story(
        current_user,
        request.title,
        request.genre,
        request.premise,
        complexity=request.complexity,
    )


@router.get("")
@router.get("/", include_in_schema=False)
async def list_stories(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List the current user's stories"""
    stories = _story_service(db).list_stories(current_user)
    return {"stories": stories, "total": len(stories)}


@router.get("/{story_id}")
async def get_story(
    story_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return {"story": _story_service(db).get_story(current_user, story_id)}


@router.post("/{story_id}/chapters", status_code=status.HTTP_201_CREATED)
async def generate_chapter(
    story_id: int,
    request: GenerateChapterRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ai: AIService = Depends(get_ai_service)
):
    """Generate the next chapter (or a specific chapter number)"""
    return await _story_service(db, ai).generate_chapter(
        current_user,
        story_id,
        chapter_number=request.chapter_number,
        title=request.title,
        complexity=request.complexity,
        target_words=request.target_words,
    )


@router.post("/{story_id}/characters")
async def generate_characters(
    story_id: int,
    request: GenerateCharactersRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ai: AIService = Depends(get_ai_service)
):
    return await _story_service(db, ai).generate_characters(
        current_user, story_id, count=request.count, complexity=request.complexity
    )


@router.post("/{story_id}/improve")
async def improve_content(
    story_id: int,
    request: ImproveContentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ai: AIService = Depends(get_ai_service)
):
    return await _story_service(db, ai).improve_content(
        current_user,
        story_id,
        request.content,
        instructions=request.instructions,
        complexity=request.complexity,
    )


@router.post("/{story_id}/analyze")
async def analyze_story(
    story_id: int,
    request: AnalyzeStoryRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ai: AIService = Depends(get_ai_service)
):
    return await _story_service(db, ai).analyze_story(
        current_user, story_id, content=request.content, complexity=request.complexity
    )


@router.post("/{story_id}/publish")
async def publish_story(
    story_id: int,
    request: Optional[PublishStoryRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Publish a story; the author becomes a creator"""
    pricing = request.model_dump(exclude_none=True) if request else None
    story = _story_service(db).publish_story(current_user, story_id, pricing)
    return {"story": story, "message": "Story published"}


@router.post("/{story_id}/read")
async def read_story(
    story_id: int,
    request: ReadAccessRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Unlock chapters of a published story with credits"""
    return _story_service(db).purchase_access(
        current_user,
        story_id,
        chapter_numbers=request.chapter_numbers,
        purchase_type=request.purchase_type.value,
    )


@router.post("/{story_id}/checkout")
async def story_checkout(
    story_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_gateway)
):
    """Start a card payment for a whole story"""
    return _story_service(db).create_story_checkout(current_user, story_id, gateway)
