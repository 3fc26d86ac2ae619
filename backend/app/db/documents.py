"""
Legal corpus access: pgvector similarity search through the match_documents
SQL function, law lookup, and search / Q&A history.
"""
from loguru import logger

from app.db import postgres
from app.models.search import SearchDocument


class DocumentStore:
    async def search_documents(
        self,
        embedding: list[float],
        match_count: int = 20,
        filter: dict | None = None,
    ) -> list[SearchDocument]:
        rows = await postgres.fetch_all(
            """SELECT id, content, metadata, similarity
               FROM match_documents($1::text::vector, $2, $3::jsonb)""",
            postgres.to_pgvector(embedding),
            match_count,
            filter or {},
        )
        docs = [
            SearchDocument(
                id=r["id"],
                content=r["content"] or "",
                metadata=r["metadata"] or {},
                similarity=float(r["similarity"] or 0.0),
            )
            for r in rows
        ]
        logger.debug("[documents] {} hits (k={})", len(docs), match_count)
        return docs

    async def get_law(self, law_id: str) -> dict | None:
        row = await postgres.fetch_one(
            "SELECT * FROM law WHERE law_id = $1",
            law_id,
        )
        return dict(row) if row else None

    async def save_search_history(
        self,
        user_id: str,
        query: str,
        document_ids: list[int],
        tokens_used: int,
    ) -> str:
        return await postgres.fetch_value(
            """INSERT INTO search_history (user_id, query, document_ids, tokens_used)
               VALUES ($1::uuid, $2, $3, $4)
               RETURNING id::text""",
            user_id,
            query,
            document_ids,
            tokens_used,
        )

    async def save_qa_history(
        self,
        user_id: str,
        question: str,
        answer: str,
        document_ids: list[int],
        tokens_used: int,
    ) -> str:
        return await postgres.fetch_value(
            """INSERT INTO qa_history (user_id, question, answer, document_ids, tokens_used)
               VALUES ($1::uuid, $2, $3, $4, $5)
               RETURNING id::text""",
            user_id,
            question,
            answer,
            document_ids,
            tokens_used,
        )

    async def list_search_history(self, user_id: str, limit: int, offset: int) -> list[dict]:
        rows = await postgres.fetch_all(
            """SELECT id::text AS id, query, document_ids, tokens_used, created_at
               FROM search_history
               WHERE user_id = $1::uuid
               ORDER BY created_at DESC
               LIMIT $2 OFFSET $3""",
            user_id,
            limit,
            offset,
        )
        return [dict(r) for r in rows]

    async def list_qa_history(self, user_id: str, limit: int, offset: int) -> list[dict]:
        rows = await postgres.fetch_all(
            """SELECT id::text AS id, question, answer, document_ids, tokens_used, created_at
               FROM qa_history
               WHERE user_id = $1::uuid
               ORDER BY created_at DESC
               LIMIT $2 OFFSET $3""",
            user_id,
            limit,
            offset,
        )
        return [dict(r) for r in rows]
