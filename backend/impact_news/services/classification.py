"""
Keyword classifier for incoming articles.

Assigns one category and a tag set using plain keyword matching against
the lists in core.taxonomy. Category scoring:

    each occurrence of a keyword in lower-cased "title description"
        +2 if it sits on word boundaries
        +1 otherwise

The highest total wins, earlier categories win ties, and a total below 2
falls back to "general".
"""
import re
from dataclasses import dataclass, field
from functools import lru_cache

from impact_news.core.taxonomy import (
    DEFAULT_CATEGORY,
    TAG_KEYWORDS,
    is_known_category,
    iter_categories,
)
from impact_news.sources.base import CandidateArticle

MIN_CATEGORY_SCORE = 2
TITLE_PROPER_NOUN = re.compile(r"^[A-Z][a-z]+$")


@dataclass
class Classification:
    category: str
    tags: list[str] = field(default_factory=list)
    scores: dict[str, int] = field(default_factory=dict)


@lru_cache(maxsize=None)
def _boundary_pattern(keyword: str) -> re.Pattern:
    return re.compile(rf"\b{re.escape(keyword)}\b")


def keyword_points(text: str, keyword: str) -> int:
    """Points one keyword earns in already lower-cased text."""
    pattern = _boundary_pattern(keyword)
    points = 0
    start = 0
    while True:
        index = text.find(keyword, start)
        if index < 0:
            break
        points += 2 if pattern.match(text, index) else 1
        start = index + len(keyword)
    return points


def score_categories(text: str) -> dict[str, int]:
    """Total keyword points per category, in tie-break order."""
    lowered = text.lower()
    return {
        category.id: sum(keyword_points(lowered, keyword) for keyword in category.keywords)
        for category in iter_categories()
    }


def pick_category(scores: dict[str, int]) -> str:
    best_category = DEFAULT_CATEGORY
    best_score = 0
    for category, score in scores.items():
        # Strict comparison keeps the earlier category on ties
        if score > best_score:
            best_category = category
            best_score = score
    return best_category if best_score >= MIN_CATEGORY_SCORE else DEFAULT_CATEGORY


def determine_category(text: str) -> str:
    return pick_category(score_categories(text))


def extract_tags(title: str, description: str | None = None) -> list[str]:
    """
    Tag keywords found as whole words, plus capitalized mid-title words.

    The second rule is a rough proper-noun heuristic: any title word after
    the first, longer than three characters, shaped like "Nvidia".
    """
    text = f"{title} {description or ''}".lower()
    tags = {keyword for keyword in TAG_KEYWORDS if _boundary_pattern(keyword).search(text)}

    for index, word in enumerate(title.split()):
        if index > 0 and len(word) > 3 and TITLE_PROPER_NOUN.match(word):
            tags.add(word.lower())

    return sorted(tags)


class Classifier:
    """Classifies candidates, keeping provider-assigned taxonomy when present."""

    def classify(self, candidate: CandidateArticle) -> Classification:
        scores = score_categories(candidate.text)

        if candidate.category and is_known_category(candidate.category):
            category = candidate.category
        else:
            category = pick_category(scores)

        if candidate.tags:
            tags = sorted({tag.strip().lower() for tag in candidate.tags if tag and tag.strip()})
        else:
            tags = extract_tags(candidate.title, candidate.description)

        return Classification(category=category, tags=tags, scores=scores)

    def apply(self, candidate: CandidateArticle) -> CandidateArticle:
        """Classify and write the result back onto the candidate."""
        result = self.classify(candidate)
        candidate.category = result.category
        candidate.tags = result.tags
        return candidate
