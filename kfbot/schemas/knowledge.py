from typing import Optional

from pydantic import BaseModel, Field


class KnowledgeLink(BaseModel):
    title: str
    desc: str = ""
    url: str
    image_path: Optional[str] = None


class KnowledgeItem(BaseModel):
    pattern: str
    is_regex: bool = Field(default=False, alias="isRegex")
    response: str = ""
    description: Optional[str] = None
    link: Optional[KnowledgeLink] = None
    voice_media_id: Optional[str] = None
    voice_media_expire_time: Optional[int] = None
    thumb_media_id: Optional[str] = None
    thumb_media_expire_time: Optional[int] = None

    model_config = {"populate_by_name": True}

    def reply_text(self) -> str:
        if self.response:
            return self.response
        if self.link:
            return f"{self.link.title}\n{self.link.url}"
        return ""


class KnowledgeBase(BaseModel):
    items: list[KnowledgeItem] = Field(default_factory=list)
