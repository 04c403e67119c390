import pytest

from mira.services.intent_service import (
    Intent,
    IntentClassifier,
    extract_department,
    extract_elevation,
    extract_factory_codes,
    extract_sale_number,
    is_mute_command,
    is_unmute_command,
)


@pytest.fixture(scope="module")
def classifier():
    return IntentClassifier()


class TestClassify:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("MF 0235 average", Intent.FACTORY_QUERY),
            ("sale 12 sale 45 elevation average", Intent.ELEVATION_QUERY),
            ("mute bot", Intent.BOT_CONTROL),
            ("unmute bot", Intent.BOT_CONTROL),
            ("activate bot", Intent.BOT_CONTROL),
            ("help", Intent.HELP),
            ("contact info", Intent.CONTACT),
            ("status", Intent.STATUS),
            ("hello", Intent.CASUAL_CONVERSATION),
            ("any vacancy available?", Intent.IRRELEVANT),
            ("I need help from accounting", Intent.DEPARTMENT_CONTACT),
        ],
    )
    def test_classifies(self, classifier, text, expected):
        assert classifier.classify(text) == expected

    def test_low_score_is_general(self, classifier):
        assert classifier.classify("xyz blah") == Intent.GENERAL

    def test_empty_and_non_string_are_general(self, classifier):
        assert classifier.classify("") == Intent.GENERAL
        assert classifier.classify(None) == Intent.GENERAL
        assert classifier.classify(42) == Intent.GENERAL

    def test_case_and_whitespace_insensitive(self, classifier):
        assert classifier.classify("  MUTE BOT  ") == Intent.BOT_CONTROL

    def test_score_applies_weight(self, classifier):
        scores = classifier.score("mute bot")
        # mute (2+1) + bot (2+1) + one pattern (3), weight 10
        assert scores[Intent.BOT_CONTROL] == 90


class TestEntities:
    def test_factory_code_entities(self, classifier):
        entities = classifier.extract_entities("MF 0235 average")
        assert entities.factory_codes == ["MF0235"]
        assert entities.sale_number is None

    def test_last_sale_number_wins(self, classifier):
        assert classifier.extract_entities("sale 12 sale 45 elevation average").sale_number == "045"

    def test_empty_text(self, classifier):
        assert classifier.extract_entities("").is_empty()


class TestFactoryCodes:
    def test_normalizes_and_deduplicates(self):
        assert extract_factory_codes("MF0235 mf 0777 MF 0235") == ["MF0235", "MF0777"]

    def test_letter_suffix(self):
        assert extract_factory_codes("mfa 123 details") == ["MFA123"]

    def test_capped_at_five(self):
        text = "MF0001 MF0002 MF0003 MF0004 MF0005 MF0006"
        assert len(extract_factory_codes(text)) == 5
        assert len(extract_factory_codes(text, limit=None)) == 6


class TestSaleNumber:
    def test_zero_padded(self):
        assert extract_sale_number("sale no. 7") == "007"

    def test_sale_number_keyword(self):
        assert extract_sale_number("report for sale number 38") == "038"

    def test_missing(self):
        assert extract_sale_number("market report please") is None


class TestSynonyms:
    def test_elevation(self):
        assert extract_elevation("UH averages sale 38") == "UH"
        assert extract_elevation("western high prices") == "WH"

    def test_department(self):
        assert extract_department("I need help from accounting") == "Accounts"
        assert extract_department("valuation report") == "Valuation"
        assert extract_department("random words") is None


class TestBotControlVerbs:
    def test_mute(self):
        assert is_mute_command("please stop") is True
        assert is_unmute_command("please stop") is False

    def test_unmute_takes_precedence(self):
        assert is_unmute_command("unmute bot") is True
        assert is_mute_command("unmute bot") is False

    def test_no_verb(self):
        assert is_mute_command("hello there") is False
        assert is_unmute_command("hello there") is False
