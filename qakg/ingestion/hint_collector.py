"""Named-entity hint collection from annotated token streams.

Annotated records carry ``tokens`` arrays (``{word, pos, lemma, ner}``) at
arbitrary nesting depth, usually under ``sentences``. Contiguous runs of tokens
sharing the same non-``O`` tag become one hint.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Iterator, List, Optional, Set

from qakg.extraction.models import GENERIC_ENTITY_TYPE, Hint

OUTSIDE_TAG = "O"


def iter_token_arrays(node: Any) -> Iterator[List[Any]]:
    """Yield every ``tokens`` list in the structure, breadth-first."""
    if not isinstance(node, (dict, list)):
        return
    queue: deque[Any] = deque([node])
    while queue:
        current = queue.popleft()
        if isinstance(current, dict):
            tokens = current.get("tokens")
            if isinstance(tokens, list):
                yield tokens
            queue.extend(current.values())
        elif isinstance(current, list):
            queue.extend(current)


def token_word(token: Any) -> str:
    if not isinstance(token, dict):
        return ""
    word = token.get("word")
    if word is None or isinstance(word, (dict, list)):
        return ""
    return str(word)


def token_tag(token: Any) -> str:
    if not isinstance(token, dict):
        return OUTSIDE_TAG
    tag = token.get("ner")
    if tag is None or isinstance(tag, (dict, list)):
        return OUTSIDE_TAG
    return str(tag) or OUTSIDE_TAG


class HintCollector:
    """Collect deduplicated (name, type) hints from NER-tagged tokens.

    Example:
        >>> collector = HintCollector(max_hints=30)
        >>> collector.collect(record)
        [Hint(name='U+ Mobile', type='ORGANIZATION')]
    """

    def __init__(self, max_hints: int = 30) -> None:
        self.max_hints = max_hints

    def collect(self, record: Any) -> List[Hint]:
        """Return hints in first-seen order, capped at ``max_hints``."""
        hints: List[Hint] = []
        if self.max_hints <= 0:
            return hints

        seen: Set[str] = set()
        for tokens in iter_token_arrays(record):
            self._collect_from_tokens(tokens, hints, seen)
            if len(hints) >= self.max_hints:
                break
        return hints

    def _collect_from_tokens(self, tokens: List[Any], hints: List[Hint], seen: Set[str]) -> None:
        run: List[str] = []
        run_tag: Optional[str] = None

        for token in tokens:
            word = token_word(token).strip()
            tag = token_tag(token)
            if tag != OUTSIDE_TAG and word:
                if run and tag != run_tag:
                    self._push(hints, seen, run, run_tag)
                    run = []
                run.append(word)
                run_tag = tag
            elif run:
                self._push(hints, seen, run, run_tag)
                run = []
                run_tag = None
            if len(hints) >= self.max_hints:
                return

        if run:
            self._push(hints, seen, run, run_tag)

    def _push(self, hints: List[Hint], seen: Set[str], words: List[str], tag: Optional[str]) -> None:
        if len(hints) >= self.max_hints:
            return
        name = " ".join(words).strip()
        if not name:
            return
        hint_type = tag or GENERIC_ENTITY_TYPE
        key = f"{name}|{hint_type}".lower()
        if key in seen:
            return
        seen.add(key)
        hints.append(Hint(name=name, type=hint_type))
