"""
Removal of repetition loops emitted by speech-to-text engines.

Whisper-style models sometimes get stuck and repeat a phrase, a sentence or a
whole exchange dozens of times. Three passes run in order:

1. short phrases (3-50 chars) repeated 3+ times in a row collapse to one;
2. sentences repeated 3+ times in a row are capped at two occurrences,
   since short answers ("Não precisa. Não precisa.") are often said twice;
3. a line whose 3-line fingerprint (itself plus the next two) was seen within the last
   5 lines is dropped, which catches repeated dialogue blocks.
"""
import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

SHORT_PHRASE_PATTERN = re.compile(r"(\b[\wÀ-ÿ\s]{3,50}[.!?,;]?\s*)\1{2,}", re.IGNORECASE)
CONSERVATIVE_PATTERN = re.compile(r"(\b[\wÀ-ÿ\s]{3,50}[.!?,;]?\s*)\1{4,}", re.IGNORECASE)
SENTENCE_SPLIT = re.compile(r"([.!?]\s+|\n+)")
PUNCTUATION_ONLY = re.compile(r"^[.!?,;\s]+$")

MAX_SENTENCE_OCCURRENCES = 2
MIN_SENTENCE_LENGTH = 5
DIALOGUE_BLOCK_LINES = 3
DIALOGUE_WINDOW_LINES = 5
FINGERPRINT_CHARS = 200
SUSPICIOUS_REMOVAL_RATIO = 0.5


@dataclass
class DeduplicationResult:
    text: str
    original_length: int
    final_length: int

    @property
    def removed_ratio(self) -> float:
        if not self.original_length:
            return 0.0
        return 1 - self.final_length / self.original_length

    @property
    def suspicious(self) -> bool:
        """More than half the transcript was repetition: the transcription is probably corrupt."""
        return self.removed_ratio > SUSPICIOUS_REMOVAL_RATIO


def _collapse_short_phrases(text: str) -> str:
    def keep_one(match):
        phrase = match.group(1)
        logger.debug(f"Collapsing repeated phrase: {phrase.strip()[:40]!r}")
        return phrase

    return SHORT_PHRASE_PATTERN.sub(keep_one, text)


def _cap_repeated_sentences(text: str) -> str:
    kept = []
    last_sentence = ""
    repetitions = 0

    # split() with one capture group alternates sentence, delimiter, sentence, ...
    parts = SENTENCE_SPLIT.split(text)
    for i in range(0, len(parts), 2):
        part = parts[i]
        delimiter = parts[i + 1] if i + 1 < len(parts) else ""
        sentence = part.strip()
        if len(sentence) < MIN_SENTENCE_LENGTH or PUNCTUATION_ONLY.match(sentence):
            kept.append(part + delimiter)
            continue

        if sentence == last_sentence:
            repetitions += 1
            if repetitions < MAX_SENTENCE_OCCURRENCES:
                kept.append(part + delimiter)
        else:
            kept.append(part + delimiter)
            last_sentence = sentence
            repetitions = 0

    return "".join(kept)


def _drop_repeated_dialogue(text: str) -> str:
    # Split on single newlines so blank separators between speaker blocks survive.
    lines = text.split("\n")
    kept = []
    last_seen = {}

    for i, raw_line in enumerate(lines):
        line = raw_line.strip()
        if not line:
            kept.append("")
            continue

        window = lines[i:i + DIALOGUE_BLOCK_LINES]
        fingerprint = " ".join(l.strip() for l in window)[:FINGERPRINT_CHARS].lower()

        if i - last_seen.get(fingerprint, -100) < DIALOGUE_WINDOW_LINES:
            logger.debug(f"Dropping repeated line: {line[:40]!r}")
            continue

        kept.append(line)
        last_seen[fingerprint] = i

    return "\n".join(kept)


def deduplicate_with_report(text: str) -> DeduplicationResult:
    if not text or not text.strip():
        return DeduplicationResult(text=text, original_length=len(text or ""), final_length=len(text or ""))

    result = _collapse_short_phrases(text)
    result = _cap_repeated_sentences(result)
    result = _drop_repeated_dialogue(result)

    report = DeduplicationResult(text=result, original_length=len(text), final_length=len(result))
    logger.info(
        f"Deduplication: {report.original_length} -> {report.final_length} chars "
        f"({report.removed_ratio * 100:.1f}% removed)"
    )
    if report.suspicious:
        logger.warning(
            f"Deduplication removed {report.removed_ratio * 100:.1f}% of the transcript; "
            f"transcription is probably corrupted"
        )
    return report


def deduplicate_text(text: str) -> str:
    return deduplicate_with_report(text).text


def deduplicate_text_conservative(text: str) -> str:
    """Only obvious loops (5+ repeats), keeping two occurrences."""
    if not text or not text.strip():
        return text

    def keep_two(match):
        phrase = match.group(1)
        logger.debug(f"Collapsing phrase loop: {phrase.strip()[:40]!r}")
        return phrase + phrase

    return CONSERVATIVE_PATTERN.sub(keep_two, text)
