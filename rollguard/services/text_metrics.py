"""
String statistics used by the name scorer.

Shannon entropy, n-gram plausibility, Jaro-Winkler similarity and
American Soundex. All functions are pure and case-insensitive.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from typing import Iterable

_NON_LETTERS = re.compile(r"[^a-z]")

COMMON_BIGRAMS = frozenset([
    "ra", "ka", "na", "sh", "ti", "je", "vi", "in", "ku", "pr",
    "ma", "la", "ga", "ha", "pa", "sa", "ta", "va", "ya", "da",
    "ba", "ja", "wa", "an", "ar", "am", "ee", "it", "ni", "ri",
    "si", "ai", "de", "ay", "al", "ir", "at", "ro", "mi", "es",
])

# A trigram also counts when it is part of one of the longer sequences.
COMMON_SEQUENCES = (
    "ind", "kum", "pri", "mal", "raj", "ram", "shy", "krish", "vish",
    "gan", "han", "lak", "bha", "dev", "nar", "vas", "yash", "moh",
    "rav", "amit", "anil", "arju", "deep", "gau", "hars", "isha", "jaya",
    "sha", "esh", "ana", "ita", "ani", "ari", "ath", "kar", "man", "san",
)

KEYBOARD_SEQUENCES = ("qwertyuiop", "asdfghjkl", "zxcvbnm", "qwerty", "asdf", "hjkl", "zxcv")


def letters_only(text: str) -> str:
    return _NON_LETTERS.sub("", (text or "").lower())


def shannon_entropy(text: str) -> float:
    """Entropy in bits per character of the letter stream."""
    letters = letters_only(text)
    if not letters:
        return 0.0
    total = len(letters)
    return -sum((n / total) * math.log2(n / total) for n in Counter(letters).values())


def ngram_score(text: str) -> float:
    """0.6 x bigram hit ratio + 0.4 x trigram hit ratio."""
    letters = letters_only(text)
    if len(letters) < 2:
        return 0.0

    bigrams = [letters[i:i + 2] for i in range(len(letters) - 1)]
    bigram_ratio = sum(1 for b in bigrams if b in COMMON_BIGRAMS) / len(bigrams)

    trigrams = [letters[i:i + 3] for i in range(len(letters) - 2)]
    trigram_ratio = 0.0
    if trigrams:
        hits = sum(1 for t in trigrams if any(t in seq or seq in t for seq in COMMON_SEQUENCES))
        trigram_ratio = hits / len(trigrams)

    return bigram_ratio * 0.6 + trigram_ratio * 0.4


def contains_keyboard_sequence(text: str) -> bool:
    letters = letters_only(text)
    return any(seq in letters for seq in KEYBOARD_SEQUENCES)


def jaro_winkler(first: str, second: str, prefix_scale: float = 0.1) -> float:
    """Jaro-Winkler similarity in [0, 1]."""
    first, second = first.lower(), second.lower()
    if first == second:
        return 1.0
    len1, len2 = len(first), len(second)
    if not len1 or not len2:
        return 0.0

    window = max(max(len1, len2) // 2 - 1, 0)
    matched1 = [False] * len1
    matched2 = [False] * len2
    matches = 0

    for i, ch in enumerate(first):
        start = max(0, i - window)
        end = min(i + window + 1, len2)
        for j in range(start, end):
            if matched2[j] or second[j] != ch:
                continue
            matched1[i] = matched2[j] = True
            matches += 1
            break

    if not matches:
        return 0.0

    transpositions = 0
    k = 0
    for i in range(len1):
        if not matched1[i]:
            continue
        while not matched2[k]:
            k += 1
        if first[i] != second[k]:
            transpositions += 1
        k += 1

    jaro = (matches / len1 + matches / len2 + (matches - transpositions / 2) / matches) / 3

    prefix = 0
    for a, b in zip(first[:4], second[:4]):
        if a != b:
            break
        prefix += 1

    return jaro + prefix * prefix_scale * (1 - jaro)


def best_similarity(token: str, corpus: Iterable[str]) -> tuple[str, float]:
    """Closest corpus entry and its Jaro-Winkler similarity."""
    best_name, best_score = "", 0.0
    for candidate in corpus:
        score = jaro_winkler(token, candidate)
        if score > best_score:
            best_name, best_score = candidate, score
            if score == 1.0:
                break
    return best_name, best_score


_SOUNDEX_CODES = {
    **dict.fromkeys("bfpv", "1"),
    **dict.fromkeys("cgjkqsxz", "2"),
    **dict.fromkeys("dt", "3"),
    "l": "4",
    **dict.fromkeys("mn", "5"),
    "r": "6",
}


def soundex(word: str) -> str:
    """
    American Soundex, 4 characters.

    ``h`` and ``w`` do not separate equal codes; vowels do.
    """
    letters = letters_only(word)
    if not letters:
        return ""

    code = letters[0].upper()
    previous = _SOUNDEX_CODES.get(letters[0], "")
    for ch in letters[1:]:
        if ch in "hw":
            continue
        digit = _SOUNDEX_CODES.get(ch, "")
        if digit and digit != previous:
            code += digit
            if len(code) == 4:
                break
        previous = digit
    return code.ljust(4, "0")
