"""Search service — published-article search and related-article discovery.

SQLite LIKE matching is the default. With ``search.semantic_enabled`` the
ChromaDB collection is queried first and LIKE is the fallback.
"""

from __future__ import annotations

import logging
from typing import Any

import aiosqlite

from journaldesk.config import settings
from journaldesk.database import get_chroma_collection, to_json
from journaldesk.models import Article, ArticleType, SearchResult
from journaldesk.publication_service import get_published_article, row_to_article

logger = logging.getLogger("journaldesk.search")


# ---------------------------------------------------------------------------
# Indexing
# ---------------------------------------------------------------------------

def index_article(article: Article) -> bool:
    """Upsert a published article into the vector collection. Returns True if indexed."""
    if not settings.search.semantic_enabled:
        return False
    try:
        collection = get_chroma_collection()
        collection.upsert(
            ids=[article.article_id],
            documents=[f"{article.title}\n\n{article.abstract}\n\n{', '.join(article.keywords)}"],
            metadatas=[{
                "article_type": article.article_type.value,
                "volume_id": article.volume_id,
                "issue_id": article.issue_id,
                "keywords": to_json(article.keywords),
            }],
        )
    except Exception:
        # The article is already stored; LIKE search still finds it.
        logger.warning("Vector indexing failed for %s", article.article_id, exc_info=True)
        return False
    return True


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

async def search_articles(
    db: aiosqlite.Connection,
    query: str,
    article_type: ArticleType | None = None,
    limit: int = 20,
) -> list[SearchResult]:
    """Search published articles by title, abstract, keywords or author name."""
    query = query.strip()
    if len(query) < settings.search.min_query_length:
        return []

    if settings.search.semantic_enabled:
        try:
            return await _semantic_search(db, query, article_type, limit)
        except Exception:
            logger.warning("Semantic search failed; using LIKE search", exc_info=True)
    return await _like_search(db, query, article_type, limit)


async def _semantic_search(
    db: aiosqlite.Connection,
    query: str,
    article_type: ArticleType | None,
    limit: int,
) -> list[SearchResult]:
    collection = get_chroma_collection()
    results = collection.query(
        query_texts=[query],
        n_results=limit,
        where={"article_type": article_type.value} if article_type else None,
    )
    if not results or not results["ids"] or not results["ids"][0]:
        return []

    found: list[SearchResult] = []
    for i, article_id in enumerate(results["ids"][0]):
        distance = results["distances"][0][i] if results.get("distances") else 0
        article = await get_published_article(db, article_id)
        if article is not None:
            # Cosine distance to similarity
            found.append(SearchResult(article=article, relevance_score=round(1.0 - distance / 2.0, 4)))
    return found


async def _like_search(
    db: aiosqlite.Connection,
    query: str,
    article_type: ArticleType | None,
    limit: int,
) -> list[SearchResult]:
    pattern = f"%{query}%"
    params: list[Any] = [pattern, pattern, pattern, pattern, pattern]
    type_clause = ""
    if article_type is not None:
        type_clause = "AND a.article_type = ?"
        params.append(article_type.value)
    params.append(limit)

    async with db.execute(
        f"""
        SELECT a.*, (a.title LIKE ?) AS title_hit FROM articles a
        LEFT JOIN users u ON u.user_id = a.author_id
        WHERE (a.title LIKE ? OR a.abstract LIKE ? OR a.keywords LIKE ? OR u.name LIKE ?)
        {type_clause}
        ORDER BY title_hit DESC, a.publish_date DESC
        LIMIT ?
        """,
        params,
    ) as cursor:
        rows = await cursor.fetchall()

    results = []
    for row in rows:
        d = dict(row)
        title_hit = d.pop("title_hit", 0)
        results.append(SearchResult(article=row_to_article(d), relevance_score=1.0 if title_hit else 0.5))
    return results


# ---------------------------------------------------------------------------
# Related articles
# ---------------------------------------------------------------------------

async def find_related(
    db: aiosqlite.Connection,
    article_id: str,
    limit: int = 5,
) -> list[SearchResult]:
    """Articles related to a given one: vector neighbours, or shared keywords."""
    article = await get_published_article(db, article_id)
    if article is None:
        return []

    if settings.search.semantic_enabled:
        try:
            results = await _semantic_search(db, f"{article.title} {article.abstract}", None, limit + 1)
            return [r for r in results if r.article.article_id != article_id][:limit]
        except Exception:
            logger.warning("Semantic related-article lookup failed", exc_info=True)

    wanted = {k.lower() for k in article.keywords}
    if not wanted:
        return []
    async with db.execute(
        "SELECT * FROM articles WHERE article_id != ? ORDER BY publish_date DESC",
        (article_id,),
    ) as cursor:
        rows = await cursor.fetchall()

    scored: list[SearchResult] = []
    for row in rows:
        candidate = row_to_article(row)
        shared = wanted & {k.lower() for k in candidate.keywords}
        if shared:
            scored.append(SearchResult(
                article=candidate,
                relevance_score=round(len(shared) / len(wanted), 4),
            ))
    scored.sort(key=lambda r: r.relevance_score, reverse=True)
    return scored[:limit]
