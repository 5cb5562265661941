# Copyright 2024 wyj
# Copyright 2025 Stephen Karl Larroque <lrq3000>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Language guess and reading time estimate for extracted articles.

Reading speeds are mean characters per minute with their standard deviation,
per ISO 639-3 language code. Unknown languages use the English figures.
"""

import math
import re
from collections import Counter

DEFAULT_LANGUAGE = "eng"

# (mean, standard deviation) in characters per minute
READING_SPEEDS = {
    "arb": (612, 88),
    "nld": (978, 143),
    "eng": (987, 188),
    "fin": (1078, 121),
    "fra": (998, 126),
    "deu": (920, 86),
    "heb": (833, 130),
    "ita": (950, 140),
    "jpn": (357, 56),
    "pol": (916, 126),
    "por": (913, 145),
    "rus": (986, 175),
    "slv": (885, 145),
    "spa": (1025, 127),
    "swe": (917, 156),
    "tur": (1054, 156),
}

MINUTES_PER_IMAGE = 0.2

STOPWORDS = {
    "eng": {"the", "and", "of", "to", "is", "in", "that", "it", "was", "for", "with", "this", "are", "you", "be"},
    "nld": {"de", "het", "een", "van", "en", "niet", "dat", "is", "op", "zijn", "voor", "met", "ook", "maar", "wordt"},
    "fin": {"ja", "on", "ei", "että", "se", "hän", "oli", "kun", "mutta", "niin", "myös", "ovat", "tämä", "kanssa", "joka"},
    "fra": {"le", "la", "les", "et", "des", "est", "une", "pas", "que", "du", "dans", "pour", "qui", "sur", "avec"},
    "deu": {"der", "die", "und", "das", "ist", "nicht", "ein", "eine", "mit", "sich", "auf", "den", "für", "auch", "wird"},
    "ita": {"il", "di", "che", "e", "la", "non", "per", "una", "sono", "della", "gli", "con", "anche", "nel", "questo"},
    "pol": {"i", "w", "nie", "na", "się", "jest", "że", "do", "to", "jak", "ale", "od", "tak", "przez", "oraz"},
    "por": {"o", "de", "não", "que", "uma", "os", "do", "da", "em", "para", "com", "mais", "como", "são", "também"},
    "slv": {"in", "je", "da", "se", "na", "so", "za", "pa", "ki", "tudi", "ali", "kot", "bi", "smo", "lahko"},
    "spa": {"el", "la", "de", "que", "y", "los", "las", "en", "es", "por", "una", "para", "con", "del", "pero"},
    "swe": {"och", "att", "det", "som", "en", "är", "på", "för", "med", "inte", "av", "till", "har", "den", "om"},
    "tur": {"ve", "bir", "bu", "da", "de", "için", "ile", "çok", "ama", "olarak", "daha", "gibi", "değil", "ne", "var"},
}

WORD_RE = re.compile(r"[^\W\d_]+", re.UNICODE)

# Minimum share of letters in a script for the page to count as written in it.
SCRIPT_THRESHOLD = 0.3


def _script_language(text):
    counts = Counter()
    letters = 0
    for char in text:
        if not char.isalpha():
            continue
        letters += 1
        code = ord(char)
        if 0x0600 <= code <= 0x06FF:
            counts["arb"] += 1
        elif 0x0590 <= code <= 0x05FF:
            counts["heb"] += 1
        elif 0x0400 <= code <= 0x04FF:
            counts["rus"] += 1
        elif 0x3040 <= code <= 0x30FF:
            counts["jpn"] += 1
        elif 0x4E00 <= code <= 0x9FFF:
            counts["cjk"] += 1

    if not letters:
        return None

    # Japanese text mixes kana with kanji.
    if counts["jpn"] and counts["jpn"] + counts["cjk"] >= letters * SCRIPT_THRESHOLD:
        return "jpn"
    for language in ("arb", "heb", "rus"):
        if counts[language] >= letters * SCRIPT_THRESHOLD:
            return language
    if counts["cjk"] >= letters * SCRIPT_THRESHOLD:
        return "cmn"
    return None


def detect_language(text, sample_size=20000):
    """
    Guess the ISO 639-3 code of `text`.

    Non-latin scripts are recognised from their Unicode block, latin languages
    by counting common stopwords. Falls back to English.
    """
    if not text:
        return DEFAULT_LANGUAGE
    sample = text[:sample_size]

    language = _script_language(sample)
    if language:
        return language

    words = Counter(word.lower() for word in WORD_RE.findall(sample))
    if not words:
        return DEFAULT_LANGUAGE

    best, best_hits = DEFAULT_LANGUAGE, 0
    for language, stopwords in STOPWORDS.items():
        hits = sum(words[word] for word in stopwords)
        if hits > best_hits:
            best, best_hits = language, hits
    return best


def _round_half_up(value):
    return int(math.floor(value + 0.5))


def estimate_read_time(length, language=DEFAULT_LANGUAGE, n_images=0):
    """
    Estimate the reading time of an article.

    Parameters:
        length (int): Number of characters of the article text.
        language (str): ISO 639-3 code, see detect_language().
        n_images (int): Number of images in the article.

    Returns:
        tuple: (min_read_time, max_read_time) in whole minutes.
    """
    mean, deviation = READING_SPEEDS.get(language, READING_SPEEDS[DEFAULT_LANGUAGE])
    images_time = MINUTES_PER_IMAGE * max(n_images, 0)
    length = max(length, 0)

    min_time = _round_half_up(length / (mean + deviation) + images_time)
    max_time = _round_half_up(length / (mean - deviation) + images_time)
    return max(min_time, 0), max(max_time, 0)
