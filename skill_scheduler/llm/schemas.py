"""
LLM 输出 Schema 定义

用于 LLM 的结构化输出。
"""

from pydantic import BaseModel, Field, field_validator


# ==============================================
# Intent Matcher Output Schema
# ==============================================
class IntentMatchResult(BaseModel):
    """意图识别结果"""
    intent_type: str = Field(description="检测到的意图类型，必须属于候选集合")
    confidence: float = Field(default=0.5, ge=0.0, le=1.0, description="置信度 0-1")
    reasoning: str = Field(default="", description="选择该意图的简短理由")


# ==============================================
# Query Analysis Output Schema
# ==============================================
class QueryAnalysisResult(BaseModel):
    """查询改写与上下文提及分析"""
    optimized_query: str = Field(default="", description="改写后的查询，保持用户语言")
    mentioned_context_ids: list[str] = Field(
        default_factory=list,
        description="查询明确提及的上下文实体 ID",
    )
    rewritten_queries: list[str] = Field(default_factory=list, description="用于检索的补充查询")
    intent: str = Field(default="", description="查询意图的一句话描述")


# ==============================================
# Tool Result Summary Schema
# ==============================================
class ToolSummary(BaseModel):
    """工具结果摘要"""
    summary: str = Field(default="", description="不超过 100 词的要点摘要和下一步建议")


# ==============================================
# Follow-up Questions Schema
# ==============================================
class FollowUpQuestions(BaseModel):
    """推荐追问"""
    recommend_ask_followup_question: list[str] = Field(
        default_factory=list,
        description="三个简短、与上下文相关的追问",
    )

    @field_validator("recommend_ask_followup_question")
    @classmethod
    def _strip_blank(cls, value: list[str]) -> list[str]:
        return [q.strip() for q in value if q and q.strip()]
