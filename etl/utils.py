# etl/utils.py
import re
import hashlib
from typing import List


def normalize_text(s: str) -> str:
    s = s.replace("\xa0", " ").replace("\r\n", "\n")
    s = re.sub(r"[ \t]+", " ", s)
    s = re.sub(r"\n{3,}", "\n\n", s)
    return s.strip()


def split_paragraphs(text: str) -> List[str]:
    return [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]


def chunk_text(text: str, max_chars: int) -> List[str]:
    """
    Packs paragraphs into chunks of at most max_chars characters.
    A single paragraph longer than max_chars is split on whitespace.
    """
    if max_chars < 1:
        raise ValueError("max_chars must be at least 1")
    chunks: List[str] = []
    current = ""
    for para in split_paragraphs(normalize_text(text)):
        pieces = [para] if len(para) <= max_chars else _split_long(para, max_chars)
        for piece in pieces:
            candidate = f"{current}\n\n{piece}" if current else piece
            if len(candidate) <= max_chars:
                current = candidate
                continue
            if current:
                chunks.append(current)
            current = piece
    if current:
        chunks.append(current)
    return chunks


def _split_long(para: str, max_chars: int) -> List[str]:
    pieces = []
    current = ""
    for word in para.split():
        while len(word) > max_chars:
            if current:
                pieces.append(current)
                current = ""
            pieces.append(word[:max_chars])
            word = word[max_chars:]
        if not word:
            continue
        candidate = f"{current} {word}" if current else word
        if len(candidate) <= max_chars:
            current = candidate
        else:
            pieces.append(current)
            current = word
    if current:
        pieces.append(current)
    return pieces


def chunk_id(book_id: str, index: int) -> str:
    raw = f"{book_id}:{index}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:32]
