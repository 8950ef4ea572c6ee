"""
Keyword extraction and prompt construction for the generative stages.
"""

import re
import time
from collections import Counter
from typing import List

from .models import Idea, PromptMessage, PromptRequest

STOP_WORDS = frozenset({
    "the", "is", "at", "which", "on", "and", "a", "an", "in", "to",
    "for", "of", "with", "that", "this", "from", "by", "hi",
})
MAX_KEYWORDS = 7
MIN_WORD_LENGTH = 2
IDEA_KEYWORDS = 3  # keywords attached to an idea card

IDEA_MAX_NEW_TOKENS = 150
SUMMARY_MAX_NEW_TOKENS = 100

_WORD_SPLIT = re.compile(r"\W+")


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> List[str]:
    """
    Most frequent words of the text, ignoring stop words and short tokens.

    Ties keep first-appearance order. Returns ["default"] when nothing
    qualifies.
    """
    words = _WORD_SPLIT.split(text.lower())
    frequency = Counter(
        word for word in words
        if len(word) >= MIN_WORD_LENGTH and word not in STOP_WORDS
    )
    keywords = [word for word, _count in frequency.most_common(limit)]
    return keywords or ["default"]


def build_idea_prompt(keywords: List[str], text: str) -> PromptRequest:
    """Prompt asking the idea stage for one concrete idea."""
    return PromptRequest(
        messages=[
            PromptMessage(
                role="system",
                content="Propose exactly one concrete idea related to the discussion. "
                        "Make it distinct and actionable.",
            ),
            PromptMessage(
                role="user",
                content=f"Keywords: [{', '.join(keywords)}]\nDiscussion context: \"{text}\"",
            ),
        ],
        max_new_tokens=IDEA_MAX_NEW_TOKENS,
    )


def build_summary_prompt(transcript: str) -> PromptRequest:
    return PromptRequest(
        messages=[
            PromptMessage(role="system", content="Summarize the meeting transcript."),
            PromptMessage(role="user", content=transcript),
        ],
        max_new_tokens=SUMMARY_MAX_NEW_TOKENS,
    )


def make_idea(generated_text: str, keywords: List[str]) -> Idea:
    return Idea(
        id=int(time.time() * 1000),
        text=generated_text.strip(),
        keywords=keywords[:IDEA_KEYWORDS],
    )
