"""
Name quality scoring.

Pipeline (each stage can reject with score 0):
1. Rule checks (digits, length, character set, repeated letters,
   junk prefixes/suffixes, keyboard sequences)
2. Phonetic sanity per token
3. Shannon entropy band
4. N-gram plausibility
5. Frequency lookup per token (store table, built-in corpus, then
   Jaro-Winkler fuzzy match)
6. Soundex code of the first significant token
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Optional, List, Tuple

from ..exceptions import ValidationError
from ..models import NameRole, NameValidation, ValidationResult
from . import name_dictionary
from .base import BaseService, ServiceContext
from .text_metrics import (
    best_similarity,
    contains_keyboard_sequence,
    letters_only,
    ngram_score,
    shannon_entropy,
    soundex,
)


JUNK_PATTERNS = ("test", "demo", "sample", "fake", "dummy", "asdf", "qwerty", "xyz", "abc")

_DIGITS = re.compile(r"\d")
_ALLOWED = re.compile(r"^[A-Za-z\s.\-']+$")
_REPEATED = re.compile(r"([a-z])\1{2,}", re.IGNORECASE)
_TOKEN_SPLIT = re.compile(r"[\s\-]+")
_CONSONANT_RUN = re.compile(r"[bcdfghjklmnpqrstvwxz]{4,}")

# Whole-name shapes that earn the larger pattern bonus.
COMMON_SHAPES = (
    re.compile(r"^[a-z]{2,15}$"),
    re.compile(r"^[a-z]+ [a-z]+$"),
    re.compile(r"^[a-z]+ [a-z]+ [a-z]+$"),
    re.compile(r"^([a-z]\.? )+[a-z]{2,}$"),
)

SOFT_PHONETIC_PENALTY = 0.5
LOW_ENTROPY_FACTOR = 0.5
PLAUSIBLE_SHAPE_BONUS = 0.3
FUZZY_WEIGHT = 0.8
NGRAM_WEIGHT = 0.6


class _Reject(Exception):
    def __init__(self, reason: str, flag: str):
        super().__init__(reason)
        self.reason = reason
        self.flag = flag


@dataclass
class _FrequencyOutcome:
    score: float = 0.0
    dictionary_matches: int = 0
    fuzzy_matches: int = 0
    flags: List[str] = field(default_factory=list)


def _vowel_mask(token: str) -> List[bool]:
    """``y`` counts as a vowel except at the start of a token."""
    return [ch in "aeiou" or (ch == "y" and i > 0) for i, ch in enumerate(token)]


def tokenize(name: str) -> List[str]:
    """Lower-case tokens with honorifics and punctuation removed."""
    raw = [letters_only(part) for part in _TOKEN_SPLIT.split(name.strip())]
    tokens = [t for t in raw if t]
    while len(tokens) > 1 and tokens[0] in name_dictionary.HONORIFICS:
        tokens.pop(0)
    return tokens


def check_rules(name: str, min_length: int, max_length: int) -> None:
    """Raise _Reject on the first hard rule the name breaks."""
    if _DIGITS.search(name):
        raise _Reject("Name cannot contain digits", "contains_digits")
    if len(name) < min_length:
        raise _Reject(f"Name too short (minimum {min_length} characters)", "invalid_length")
    if len(name) > max_length:
        raise _Reject(f"Name too long (maximum {max_length} characters)", "invalid_length")
    if not _ALLOWED.match(name):
        raise _Reject("Name contains invalid characters", "invalid_characters")
    if len(letters_only(name)) < 2:
        raise _Reject("Name must contain letters", "invalid_characters")
    if _REPEATED.search(name):
        raise _Reject("Name contains a run of repeated characters", "repeated_characters")

    for part in _TOKEN_SPLIT.split(name.lower()):
        token = letters_only(part)
        if not token:
            continue
        for junk in JUNK_PATTERNS:
            if token.startswith(junk) or token.endswith(junk):
                raise _Reject(f"Name contains junk pattern '{junk}'", "junk_pattern")

    if contains_keyboard_sequence(name):
        raise _Reject("Name contains a keyboard sequence", "keyboard_pattern")


def check_phonetics(tokens: List[str]) -> bool:
    """
    Hard phonetic rules raise _Reject.

    Returns:
        True when a soft issue (long consonant run, vowel share below 20%)
        was found
    """
    soft = False
    for token in tokens:
        if len(token) < 2:
            continue
        mask = _vowel_mask(token)
        vowels = sum(mask)
        consonants = len(token) - vowels

        if consonants == 0:
            raise _Reject(f"Token '{token}' has no consonant", "phonetic_violation")
        if len(token) >= 3 and vowels == 0:
            raise _Reject(f"Token '{token}' has no vowel", "phonetic_violation")
        if vowels / consonants > 3:
            raise _Reject(f"Token '{token}' has too many vowels", "phonetic_violation")

        plain = "".join("a" if is_vowel else ch for ch, is_vowel in zip(token, mask))
        if _CONSONANT_RUN.search(plain) or vowels / len(token) < 0.2:
            soft = True
    return soft


def check_entropy(letters: str, min_entropy: float, max_entropy: float) -> float:
    entropy = shannon_entropy(letters)
    n = len(letters)
    low_cut = min(min_entropy, LOW_ENTROPY_FACTOR * math.log2(n)) if n > 1 else 0.0
    if entropy < low_cut:
        raise _Reject("Name is too repetitive", "low_entropy")
    if entropy > max_entropy:
        raise _Reject("Name appears to be random characters", "high_entropy")
    return entropy


def has_plausible_shape(token: str) -> bool:
    """Single token of 2-15 letters with a reasonable vowel share."""
    if not re.match(r"^[a-z]{2,15}$", token):
        return False
    vowels = sum(_vowel_mask(token))
    consonants = len(token) - vowels
    if consonants and vowels / consonants < 0.1:
        return False
    return not (vowels == 0 and len(token) > 3)


def common_shape_bonus(tokens: List[str], original: str) -> float:
    spaced = re.sub(r"\s+", " ", original.strip().lower())
    joined = " ".join(tokens)
    if any(shape.match(joined) for shape in COMMON_SHAPES[:3]) or COMMON_SHAPES[3].match(spaced):
        return 0.1
    return 0.05


class NameScorer(BaseService):
    """
    Scores personal names for plausibility.

    The frequency table in the store is consulted first; the built-in
    corpus covers tokens the table does not know.
    """

    name = "NameScorer"

    def __init__(self, context: ServiceContext):
        super().__init__(context)
        self.settings = self.config.name
        self._token_cache: dict[str, List[str]] = {}

    # ------------------------------------------------------------------
    # Frequency lookup
    # ------------------------------------------------------------------

    def _corpus(self, role: NameRole) -> List[str]:
        if role.value not in self._token_cache:
            stored = self.store.list_name_tokens(role.value)
            self._token_cache[role.value] = sorted(set(stored) | name_dictionary.corpus_for(role))
        return self._token_cache[role.value]

    def invalidate_corpus(self) -> None:
        self._token_cache.clear()

    def _roles_for(self, role: NameRole, index: int, count: int) -> Tuple[NameRole, ...]:
        # A full name given as first_name: the last token is a surname.
        if role == NameRole.FIRST_NAME and count > 1 and index == count - 1:
            return (NameRole.FIRST_NAME, NameRole.LAST_NAME)
        return (role,)

    def _exact(self, token: str, roles: Tuple[NameRole, ...]) -> Optional[float]:
        for role in roles:
            row = self.store.get_name_frequency(token, role.value)
            if row is not None:
                return row.frequency_score
        for role in roles:
            if token in name_dictionary.corpus_for(role):
                return self.settings.dictionary_frequency
        return None

    def _score_tokens(self, tokens: List[str], role: NameRole) -> _FrequencyOutcome:
        outcome = _FrequencyOutcome()
        scored = 0
        total = 0.0
        for index, token in enumerate(tokens):
            if len(token) < 2:
                continue
            scored += 1
            roles = self._roles_for(role, index, len(tokens))

            exact = self._exact(token, roles)
            if exact is not None:
                outcome.dictionary_matches += 1
                total += exact
                continue

            best = ("", 0.0)
            for r in roles:
                candidate = best_similarity(token, self._corpus(r))
                if candidate[1] > best[1]:
                    best = candidate
            if best[1] >= self.settings.fuzzy_threshold:
                outcome.fuzzy_matches += 1
                total += FUZZY_WEIGHT * best[1]
                continue

            fallback = ngram_score(token) * NGRAM_WEIGHT
            if has_plausible_shape(token):
                fallback += PLAUSIBLE_SHAPE_BONUS
            total += fallback

        outcome.score = min(total / scored, 1.0) if scored else 0.0
        if outcome.fuzzy_matches:
            outcome.flags.append("fuzzy_match")
        if scored and not outcome.dictionary_matches and not outcome.fuzzy_matches:
            outcome.flags.append("no_dictionary_match")
        return outcome

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def score(self, name: Optional[str], role: NameRole = NameRole.FIRST_NAME) -> NameValidation:
        """
        Score one name for ``role``.

        Rejections are results, not exceptions. An unknown role raises
        ValidationError.
        """
        try:
            role = NameRole(role)
        except ValueError as e:
            raise ValidationError(
                f"Unknown name role: {role}",
                field_name="role",
                field_value=role,
                expected=", ".join(r.value for r in NameRole),
            ) from e

        original = (name or "").strip()
        if not original:
            return self._rejected(original, role, "Name is required", "required", [])

        tokens = tokenize(original)
        letters = "".join(tokens)
        phonetic_code = soundex(next((t for t in tokens if len(t) > 1), tokens[0] if tokens else ""))

        entropy = None
        try:
            check_rules(original, self.settings.min_length, self.settings.max_length)
            soft_issue = check_phonetics(tokens)
            entropy = check_entropy(letters, self.settings.min_entropy, self.settings.max_entropy)
        except _Reject as rejection:
            result = self._rejected(original, role, rejection.reason, rejection.flag, tokens)
            result.phonetic_code = phonetic_code
            result.entropy = round(entropy, 4) if entropy is not None else None
            return result

        frequency = self._score_tokens(tokens, role)
        flags = list(frequency.flags)
        if soft_issue:
            flags.insert(0, "phonetic_issues")

        s = 1.0
        s = 0.8 * s + 0.2 * min(len(original) / 20, 1.0)
        s = 0.85 * s + 0.15 * min(len(tokens) / 3, 1.0)
        if soft_issue:
            s *= SOFT_PHONETIC_PENALTY
        s = 0.7 * s + 0.3 * frequency.score
        s = 0.9 * s + 0.1 * min(len(set(letters)) / 10, 1.0)
        s = 0.9 * s + common_shape_bonus(tokens, original)
        score = round(max(0.0, min(1.0, s)), 2)

        if score >= self.settings.pass_at:
            result = ValidationResult.PASSED
            reason = ""
        elif score >= self.settings.flag_at:
            result = ValidationResult.FLAGGED
            reason = "Name needs manual verification"
        else:
            result = ValidationResult.REJECTED
            reason = "Name does not resemble known names"

        self.log_debug("Name scored", role=role.value, score=score, result=result.value)
        return NameValidation(
            name=original,
            role=role.value,
            score=score,
            validation_result=result,
            flags=flags,
            reason=reason,
            phonetic_code=phonetic_code,
            tokens=tokens,
            entropy=round(entropy, 4),
            ngram_score=round(ngram_score(letters), 4),
            dictionary_matches=frequency.dictionary_matches,
            fuzzy_matches=frequency.fuzzy_matches,
        )

    def _rejected(self, name: str, role: NameRole, reason: str, flag: str, tokens: List[str]) -> NameValidation:
        self.log_debug("Name rejected", role=role.value, reason=flag)
        return NameValidation(
            name=name,
            role=role.value,
            score=0.0,
            validation_result=ValidationResult.REJECTED,
            flags=[flag],
            reason=reason,
            tokens=tokens,
        )

    def seed_name_frequencies(self) -> int:
        """Load the built-in corpus into the store's frequency table."""
        rows = name_dictionary.seed_rows(self.settings.dictionary_frequency)
        with self.store.transaction():
            written = self.store.upsert_name_frequencies(rows)
        self.invalidate_corpus()
        self.log_info("Name frequency table seeded", rows=written)
        return written
