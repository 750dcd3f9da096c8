import unittest

from newspipe.news_id import (
    InvalidUrlFormat,
    canonical_article_url,
    to_news_id,
    validate_article_url,
)


class NewsIdTestCase(unittest.TestCase):
    def test_derives_office_and_article_components(self) -> None:
        self.assertEqual(
            to_news_id("https://n.news.naver.com/mnews/article/015/0005249661"),
            "015#0005249661",
        )

    def test_ignores_query_string_and_trailing_segments(self) -> None:
        self.assertEqual(
            to_news_id("https://n.news.naver.com/mnews/article/009/0005512345/comment?sid=101"),
            "009#0005512345",
        )

    def test_rejects_non_article_paths(self) -> None:
        for url in (
            "https://n.news.naver.com/main/ranking",
            "https://n.news.naver.com/mnews/article/abc/123",
            "https://finance.naver.com/news/news_read.naver?article_id=1&office_id=2",
        ):
            with self.subTest(url=url), self.assertRaises(InvalidUrlFormat):
                to_news_id(url)

    def test_invalid_url_format_is_value_error(self) -> None:
        self.assertTrue(issubclass(InvalidUrlFormat, ValueError))


class CanonicalUrlTestCase(unittest.TestCase):
    def test_builds_canonical_url(self) -> None:
        url = canonical_article_url("015", "0005249661")
        self.assertEqual(url, "https://n.news.naver.com/mnews/article/015/0005249661")
        self.assertEqual(to_news_id(url), "015#0005249661")

    def test_rejects_non_numeric_components(self) -> None:
        for office_id, article_id in (("01a", "1"), ("1", ""), ("", "1")):
            with self.subTest(office_id=office_id, article_id=article_id), self.assertRaises(InvalidUrlFormat):
                canonical_article_url(office_id, article_id)


class ValidateArticleUrlTestCase(unittest.TestCase):
    def test_accepts_naver_article_url(self) -> None:
        url = "https://n.news.naver.com/mnews/article/015/0005249661"
        self.assertEqual(validate_article_url(f"  {url} "), url)

    def test_rejects_other_hosts_and_schemes(self) -> None:
        for url in (
            "http://n.news.naver.com/mnews/article/015/0005249661",
            "https://news.example.com/mnews/article/015/0005249661",
            "https://n.news.naver.com/main/home",
        ):
            with self.subTest(url=url), self.assertRaises(InvalidUrlFormat):
                validate_article_url(url)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
