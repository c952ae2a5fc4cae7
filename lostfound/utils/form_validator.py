from typing import List, Optional
from fastapi import HTTPException
from pydantic import BaseModel, Field, ValidationError

from lostfound.models.enums import ItemType

MAX_TAGS = 10


class ValidatedCreateItem(BaseModel):
    item_type: ItemType
    title: str = Field(min_length=3, max_length=100)
    description: str = Field(min_length=10, max_length=1000)
    category: str = Field(min_length=2, max_length=50)
    location: str = Field(min_length=2, max_length=100)
    tags: List[str] = Field(default_factory=list, max_length=MAX_TAGS)


def parse_tags(raw: Optional[str]) -> List[str]:
    """Comma separated tag entry -> trimmed tags, duplicates and blanks dropped, order kept."""
    if not raw:
        return []

    tags: List[str] = []
    for tag in raw.split(","):
        tag = tag.strip()
        if tag and tag not in tags:
            tags.append(tag)

    return tags


def validate_create_item_form(
    item_type: str,
    title: str,
    description: str,
    category: str,
    location: str,
    tags: Optional[str] = None,
) -> ValidatedCreateItem:
    try:
        return ValidatedCreateItem(
            item_type=item_type,
            title=title.strip(),
            description=description.strip(),
            category=category.strip(),
            location=location.strip(),
            tags=parse_tags(tags),
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=400,
            detail=e.errors(include_url=False, include_context=False),
        )
