"""Tests for per-market aggregation of OCR text."""

from mercado_radar.schemas import PostOCRResult
from mercado_radar.services.aggregator import (
    build_market_text,
    group_posts_by_market,
    select_promotion_posts,
)


def _post(code: str, market: str, text: str, promotion: bool = True) -> PostOCRResult:
    return PostOCRResult(
        post_id=f"id-{code}",
        post_code=code,
        market_name=market,
        success=True,
        combined_text=text,
        is_promotion_post=promotion,
    )


def test_select_promotion_posts_drops_non_catalogs_and_empty_text():
    posts = [
        _post("A1", "Mercado A", "Arroz R$ 19,90 oferta"),
        _post("A2", "Mercado A", "Bom dia!", promotion=False),
        _post("A3", "Mercado A", "   "),
    ]
    assert [p.post_code for p in select_promotion_posts(posts)] == ["A1"]


def test_group_posts_keeps_arrival_order():
    posts = [
        _post("B1", "Mercado B", "x"),
        _post("A1", "Mercado A", "y"),
        _post("B2", "Mercado B", "z"),
    ]
    groups = group_posts_by_market(posts)
    assert list(groups) == ["Mercado B", "Mercado A"]
    assert [p.post_code for p in groups["Mercado B"]] == ["B1", "B2"]


def test_build_market_text_format():
    text = build_market_text(
        [_post("A1", "Mercado A", "Arroz R$ 19,90"), _post("A2", "Mercado A", "Café R$ 15,90")]
    )
    assert text == "POST A1:\nArroz R$ 19,90\n---\n\nPOST A2:\nCafé R$ 15,90\n---\n"
