"""
Run configuration and context entity models.

这些模型由调用方在每次运行前构造，运行期间只读。
"""

from enum import Enum
from typing import Any

from langchain_core.messages import BaseMessage
from pydantic import BaseModel, ConfigDict, Field


class ContextItemMetadata(BaseModel):
    """Metadata attached to every context entity."""

    model_config = ConfigDict(extra="allow")

    is_current_context: bool = Field(default=False, description="当前正在查看/编辑的实体")


class Resource(BaseModel):
    resource_id: str
    title: str = ""
    content: str = ""
    url: str | None = None
    metadata: ContextItemMetadata = Field(default_factory=ContextItemMetadata)


class Canvas(BaseModel):
    canvas_id: str
    title: str = ""
    content: str = ""
    project_id: str | None = None
    metadata: ContextItemMetadata = Field(default_factory=ContextItemMetadata)


class Project(BaseModel):
    project_id: str
    title: str = ""
    description: str = ""
    metadata: ContextItemMetadata = Field(default_factory=ContextItemMetadata)


class ContentItem(BaseModel):
    """A piece of text the user selected and attached to the query."""

    content: str
    title: str = ""
    url: str | None = None
    metadata: ContextItemMetadata = Field(default_factory=ContextItemMetadata)


class Source(BaseModel):
    """A content chunk with provenance, used as model context and for citations."""

    entity_id: str | None = None
    entity_type: str = Field(
        default="",
        description="来源类型: resource, canvas, project, content, knowledge_base, web, url",
    )
    title: str = ""
    content: str = ""
    url: str | None = None
    score: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class InPlaceEditType(str, Enum):
    BLOCK = "block"
    INLINE = "inline"


class SelectedRange(BaseModel):
    start_index: int = Field(ge=0)
    end_index: int = Field(ge=0)
    selected_text: str = ""


class HighlightSelection(BaseModel):
    """The highlighted text plus its surroundings, as shown to the model."""

    selected_text: str
    text_before: str = ""
    text_after: str = ""


class CanvasEditConfig(BaseModel):
    selected_range: SelectedRange | None = None
    in_place_edit_type: InPlaceEditType | None = None
    selection: HighlightSelection | None = None

    @property
    def has_selection(self) -> bool:
        return self.selected_range is not None and self.in_place_edit_type is not None


class Icon(BaseModel):
    type: str = "emoji"
    value: str = ""


class CapabilityMeta(BaseModel):
    """
    Capability 描述

    带 skill_id 的是调用方安装的实例（跨轮次持久），否则只是按名称查找的模板。
    """

    tpl_name: str
    skill_id: str | None = None
    display_name: str = ""
    icon: Icon | None = None

    @property
    def is_instance(self) -> bool:
        return self.skill_id is not None


class RunConfig(BaseModel):
    """Read-only configuration for one scheduler run."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, protected_namespaces=())

    model_name: str | None = None
    model_context_limit: int | None = Field(default=None, gt=0, description="覆盖内置的上下文窗口表")
    locale: str = "en"
    chat_history: list[BaseMessage] = Field(default_factory=list)

    # 上下文
    resources: list[Resource] = Field(default_factory=list)
    canvases: list[Canvas] = Field(default_factory=list)
    projects: list[Project] = Field(default_factory=list)
    content_list: list[ContentItem] = Field(default_factory=list)
    canvas_edit_config: CanvasEditConfig | None = None

    # 功能开关
    enable_web_search: bool = False
    enable_knowledge_base_search: bool = False
    enable_canvas_intents: bool = True

    # Capabilities
    selected_skill: CapabilityMeta | None = None
    installed_skills: list[CapabilityMeta] = Field(default_factory=list)

    # 标识
    project_id: str | None = None
    conv_id: str | None = None

    deadline_seconds: float | None = Field(default=None, gt=0)

    @property
    def current_canvas(self) -> Canvas | None:
        return next((c for c in self.canvases if c.metadata.is_current_context), None)

    @property
    def current_resource(self) -> Resource | None:
        return next((r for r in self.resources if r.metadata.is_current_context), None)

    @property
    def edit_config(self) -> CanvasEditConfig:
        return self.canvas_edit_config or CanvasEditConfig()
