"""Group promotional posts by market and join their text into one block."""

from __future__ import annotations

from mercado_radar.schemas import PostOCRResult

POST_HEADER = "POST {code}:"
POST_SEPARATOR = "---"


def select_promotion_posts(results: list[PostOCRResult]) -> list[PostOCRResult]:
    """Posts classified as catalogs that actually carry text."""
    return [r for r in results if r.is_promotion_post and r.combined_text.strip()]


def group_posts_by_market(posts: list[PostOCRResult]) -> dict[str, list[PostOCRResult]]:
    """Group by market name, keeping the order posts arrived in."""
    groups: dict[str, list[PostOCRResult]] = {}
    for post in posts:
        groups.setdefault(post.market_name, []).append(post)
    return groups


def build_market_text(posts: list[PostOCRResult]) -> str:
    """Concatenate post texts, each block headed by its post code."""
    blocks = [
        f"{POST_HEADER.format(code=post.post_code)}\n{post.combined_text}\n{POST_SEPARATOR}\n"
        for post in posts
    ]
    return "\n".join(blocks)
