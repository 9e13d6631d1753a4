import json

from category_monitor.extractors import Confidence, CountExtractor


def test_data_attribute_wins_over_text() -> None:
    body = (
        '<div data-category-products-count="1234"></div>'
        "<p>Найдено 99 товаров</p>"
    )
    result = CountExtractor().extract(body)
    assert result.count == 1234
    assert result.strategy == "data-attribute"
    assert result.confidence is Confidence.HIGH


def test_text_pattern_with_grouped_digits() -> None:
    result = CountExtractor().extract("<span>1 234 товара</span>")
    assert result.count == 1234
    assert result.strategy == "text-pattern"
    assert result.confidence is Confidence.LOW


def test_neighbouring_number_is_not_glued_on() -> None:
    body = '<span class="cart-badge">3</span><h1>15 товаров</h1>'
    assert CountExtractor().extract(body).count == 15


def test_year_before_count_is_ignored() -> None:
    body = "<p>Коллекция 2024</p><p>37 товаров</p>"
    assert CountExtractor().extract(body).count == 37


def test_non_breaking_thousands_separator() -> None:
    assert CountExtractor().extract("<span>12\u00a0500 товаров</span>").count == 12500


def test_english_unit_word() -> None:
    assert CountExtractor().extract("<h1>Showing 57 items</h1>").count == 57


def test_json_payload() -> None:
    body = json.dumps({"data": {"productCount": 321, "products": []}})
    result = CountExtractor().extract(body)
    assert result.count == 321
    assert result.strategy == "json"


def test_blocked_page_is_flagged() -> None:
    body = "<html><body><h1>Доступ к сайту временно ограничен</h1> 0 товаров</body></html>"
    result = CountExtractor().extract(body)
    assert result.blocked is True
    assert result.count is None


def test_nothing_found() -> None:
    assert CountExtractor().extract("<html><body>Hello</body></html>") is None
    assert CountExtractor().extract("") is None


def test_non_numeric_attribute_gives_none_count() -> None:
    result = CountExtractor().extract('<div data-category-products-count="n/a"></div>')
    assert result is not None
    assert result.count is None
