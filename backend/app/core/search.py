"""
The knowledge-base tool offered to the consultant model, and rendering of
search hits into the markdown blob returned as the tool's response.
"""
from app.models.llm import ToolDeclaration
from app.models.search import SearchDocument

SEARCH_TOOL_NAME = "search_legal_knowledge_base"

# Per-hit content cap inside the tool response
HIT_CONTENT_CHARS = 1000

SEARCH_TOOL = ToolDeclaration(
    name=SEARCH_TOOL_NAME,
    description=(
        "搜尋澳門法律知識庫，取得與問題相關的法律條文與文件。"
        "當回答需要引用具體法律規定時使用。"
    ),
    parameters={
        "type": "OBJECT",
        "properties": {
            "keywords": {
                "type": "STRING",
                "description": "用於向量搜尋的法律關鍵詞，以空格分隔",
            }
        },
        "required": ["keywords"],
    },
)


def format_search_results(documents: list[SearchDocument]) -> str:
    """
    Render hits as markdown for the model. Each hit is numbered so the model can
    cite it; returns "" when there are no hits.
    """
    if not documents:
        return ""

    blocks: list[str] = [f"## 法律知識庫搜尋結果 ({len(documents)} 份文件)\n"]
    for n, doc in enumerate(documents, start=1):
        content = doc.content
        if len(content) > HIT_CONTENT_CHARS:
            content = content[:HIT_CONTENT_CHARS] + "..."

        lines = [f"### [{n}] {doc.title}"]
        law_id = doc.metadata.get("law_id")
        if law_id:
            lines.append(f"- 法律編號: {law_id}")
        lines.append(f"- 文件ID: {doc.id}")
        lines.append(f"- 相關度: {round(doc.similarity * 100)}%")
        lines.append("")
        lines.append(content)
        blocks.append("\n".join(lines) + "\n")

    return "\n".join(blocks)


def truncate_content(content: str, limit: int = 500) -> str:
    return content[:limit] + ("..." if len(content) > limit else "")
