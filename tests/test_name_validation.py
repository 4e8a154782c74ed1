import pytest

from rollguard.exceptions import ValidationError
from rollguard.models import NameFrequency, NameRole, ValidationResult
from rollguard.services.name_validation import NameScorer, tokenize
from rollguard.services.text_metrics import (
    jaro_winkler,
    ngram_score,
    shannon_entropy,
    soundex,
)


@pytest.fixture
def scorer(context):
    return NameScorer(context)


# ---------------------------------------------------------------------------
# Text metrics
# ---------------------------------------------------------------------------

def test_soundex_groups_similar_sounding_names():
    assert soundex("Robert") == "R163"
    assert soundex("Rupert") == "R163"
    assert soundex("Ashcraft") == "A261"
    assert soundex("Lee") == "L000"
    assert soundex("") == ""


def test_shannon_entropy():
    assert shannon_entropy("aaaa") == 0.0
    assert shannon_entropy("abab") == pytest.approx(1.0)
    assert shannon_entropy("a1 b!") == pytest.approx(1.0)


def test_jaro_winkler():
    assert jaro_winkler("martha", "marhta") == pytest.approx(0.961, abs=1e-3)
    assert jaro_winkler("priya", "priya") == 1.0
    assert jaro_winkler("abc", "") == 0.0


def test_ngram_score_prefers_name_like_strings():
    assert ngram_score("ramesh") > ngram_score("xqzvbt")
    assert ngram_score("a") == 0.0


def test_tokenize_drops_honorifics():
    assert tokenize("Shri Ramesh Kumar") == ["ramesh", "kumar"]
    assert tokenize("Dr. A. P. J. Kalam") == ["a", "p", "j", "kalam"]


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def test_common_full_name_passes(scorer):
    result = scorer.score("Priya Sharma", NameRole.FIRST_NAME)

    assert result.validation_result == ValidationResult.PASSED
    assert result.score >= 0.8
    assert result.valid
    assert result.dictionary_matches == 2
    assert result.phonetic_code == "P600"


def test_name_with_digits_is_rejected_with_zero_score(scorer):
    result = scorer.score("John123")

    assert result.score == 0.0
    assert result.validation_result == ValidationResult.REJECTED
    assert "contains_digits" in result.flags
    assert "digits" in result.reason
    assert not result.valid


@pytest.mark.parametrize("name, flag", [
    ("", "required"),
    ("Al", "invalid_length"),
    ("Ravi@Kumar", "invalid_characters"),
    ("Raaaj", "repeated_characters"),
    ("Testuser", "junk_pattern"),
    ("Asdfgh Singh", "junk_pattern"),
    ("Ram Qwerty", "junk_pattern"),
    ("Bcd Fgh", "phonetic_violation"),
    ("Aeiou", "phonetic_violation"),
])
def test_hard_rejections(scorer, name, flag):
    result = scorer.score(name)

    assert result.validation_result == ValidationResult.REJECTED
    assert result.score == 0.0
    assert flag in result.flags


def test_random_letters_score_low(scorer):
    result = scorer.score("Xkqzvj Wpfbtm")
    assert result.validation_result != ValidationResult.PASSED


def test_near_miss_spelling_uses_fuzzy_match(scorer):
    result = scorer.score("Rajesh Sharmaa")

    assert result.fuzzy_matches >= 1
    assert "fuzzy_match" in result.flags
    assert result.valid


def test_score_is_always_in_unit_interval(scorer):
    for name in ["Anna", "Sandhya Devi", "Mohan Lal", "Zzyzx Qwv", "A. K. Singh", "Ram"]:
        result = scorer.score(name)
        assert 0.0 <= result.score <= 1.0


def test_unknown_role_raises(scorer):
    with pytest.raises(ValidationError):
        scorer.score("Priya", "nickname")


def test_store_frequency_row_overrides_builtin(scorer, store):
    store.upsert_name_frequencies([NameFrequency("zorawar", NameRole.FIRST_NAME.value, 1.0)])
    scorer.invalidate_corpus()

    result = scorer.score("Zorawar", NameRole.FIRST_NAME)

    assert result.dictionary_matches == 1
    assert result.fuzzy_matches == 0


def test_seed_name_frequencies_loads_every_role(scorer, store):
    written = scorer.seed_name_frequencies()

    assert written == len(store.name_frequency)
    assert store.get_name_frequency("sharma", "last_name") is not None
    assert store.get_name_frequency("devaki", "mother_name") is not None
