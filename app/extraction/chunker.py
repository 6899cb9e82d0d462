"""
Split reduced text into bounded, independently addressable extraction units.
"""

from __future__ import annotations

import hashlib
import json
import re

from app.extraction.types import ExtractionUnit

# Section boundaries: a line that starts a markdown heading, or a blank line.
SECTION_BOUNDARY_REGEX = re.compile(r"\n(?=#{1,6}\s)|\n[ \t]*\n")


def build_cache_key(*, text: str, goal: str, model_identity: str) -> str:
    payload = json.dumps([text, goal, model_identity], ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class Chunker:
    """
    Pack sections into chunks of at most `chunk_size` characters.

    Sections are joined with a blank line while they fit. A section that is
    larger than `chunk_size` on its own is split on line boundaries, and a
    single line that is still too long is cut at `chunk_size`.
    """

    def __init__(self, *, chunk_size: int = 4000) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive.")
        self.chunk_size = chunk_size

    def split(self, text: str) -> list[str]:
        stripped = text.strip()
        if not stripped:
            return []
        if len(stripped) <= self.chunk_size:
            return [stripped]

        sections = [section.strip() for section in SECTION_BOUNDARY_REGEX.split(stripped)]
        chunks: list[str] = []
        current = ""
        for section in sections:
            if not section:
                continue
            if len(section) > self.chunk_size:
                if current:
                    chunks.append(current)
                    current = ""
                chunks.extend(self._split_lines(section))
                continue

            candidate = f"{current}\n\n{section}" if current else section
            if len(candidate) <= self.chunk_size:
                current = candidate
            else:
                chunks.append(current)
                current = section
        if current:
            chunks.append(current)
        return chunks

    def build_units(self, text: str, *, goal: str, model_identity: str) -> list[ExtractionUnit]:
        pieces = self.split(text)
        total = len(pieces)
        return [
            ExtractionUnit(
                index=index,
                total=total,
                text=piece,
                cache_key=build_cache_key(text=piece, goal=goal, model_identity=model_identity),
            )
            for index, piece in enumerate(pieces)
        ]

    def _split_lines(self, section: str) -> list[str]:
        chunks: list[str] = []
        current = ""
        for line in section.split("\n"):
            for piece in self._hard_wrap(line):
                candidate = f"{current}\n{piece}" if current else piece
                if len(candidate) <= self.chunk_size:
                    current = candidate
                else:
                    if current:
                        chunks.append(current)
                    current = piece
        if current.strip():
            chunks.append(current)
        return chunks

    def _hard_wrap(self, line: str) -> list[str]:
        if len(line) <= self.chunk_size:
            return [line]
        return [line[start : start + self.chunk_size] for start in range(0, len(line), self.chunk_size)]
