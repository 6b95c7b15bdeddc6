from news_refinery.seo import MAX_DESCRIPTION_CHARS, SEOCatalogue, load_keywords, search_engine_for


def test_search_engine_per_language():
    assert search_engine_for("zh") == "baidu"
    assert search_engine_for("en") == "google"
    assert search_engine_for("ja") == "google"


def test_high_value_filters_and_ranks(seo):
    ranked = [k.keyword for k in seo.high_value("en")]
    assert ranked == ["underwear wholesale supplier", "intimate apparel manufacturer"]


def test_zh_uses_baidu_keywords_only(seo):
    assert seo.primary_keyword("zh") == "内衣批发厂家"


def test_no_keywords_for_language(seo):
    assert seo.primary_keyword("fr") is None
    assert seo.seo_title("Titre", "fr") == "Titre"
    assert seo.inject_keyword("Contenu", "fr") == ("Contenu", False)


def test_seo_title_formats(seo):
    assert seo.seo_title("Cotton prices rise", "en") == "Cotton prices rise | underwear wholesale supplier"
    assert seo.seo_title("棉价上涨", "zh") == "内衣批发厂家 - 棉价上涨"


def test_seo_title_keeps_existing_keyword(seo):
    title = "Finding an Underwear Wholesale Supplier in 2025"
    assert seo.seo_title(title, "en") == title


def test_short_description_padded_with_keyword(seo):
    result = seo.seo_description("Cotton prices rise.", "en")
    assert result == "Cotton prices rise. Professional underwear wholesale supplier services."


def test_long_description_truncated(seo):
    result = seo.seo_description("Cotton market update. " * 20, "en")
    assert len(result) <= MAX_DESCRIPTION_CHARS
    assert result.endswith("...")


def test_inject_keyword_once(seo):
    content, injected = seo.inject_keyword("Cotton prices rose again.", "en")
    assert injected
    assert "underwear wholesale supplier" in content
    again, injected_again = seo.inject_keyword(content, "en")
    assert not injected_again
    assert again == content


def test_bundled_keyword_catalogue():
    keywords = load_keywords()
    assert any(k.search_engine == "baidu" and k.language == "zh" for k in keywords)
    catalogue = SEOCatalogue()
    assert catalogue.primary_keyword("en") == "underwear wholesale supplier"
    assert catalogue.primary_keyword("zh") == "内衣批发厂家"
