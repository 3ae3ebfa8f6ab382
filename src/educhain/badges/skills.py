"""Skill labels and token ids for proof-of-learning badges."""

from __future__ import annotations

import re
import secrets

TOKEN_PREFIX = "POL-"
TOKEN_HEX_LENGTH = 32

DEFAULT_SKILL = "General Knowledge"

# First match wins, so narrower skills come before broader ones.
SKILL_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("Smart Contracts", ("solidity", "smart contract", "smart contracts", "evm")),
    ("Blockchain", ("blockchain", "web3", "ethereum", "bitcoin", "crypto", "defi", "nft")),
    ("Machine Learning", ("machine learning", "neural", "deep learning", "ml", "ai")),
    ("Data Science", ("data", "statistics", "pandas", "analytics", "sql")),
    ("Python", ("python", "django", "flask")),
    ("JavaScript/TypeScript", ("javascript", "typescript", "react", "node", "nextjs")),
    ("Web Development", ("html", "css", "frontend", "backend", "web")),
    ("Mathematics", ("math", "mathematics", "algebra", "calculus", "geometry", "trigonometry")),
    ("Physics", ("physics", "mechanics", "thermodynamics", "optics")),
    ("Chemistry", ("chemistry", "chemical", "organic")),
    ("Biology", ("biology", "genetics", "cell", "ecology")),
    ("History", ("history", "historical", "civilization")),
    ("Writing", ("essay", "writing", "grammar", "literature", "poetry")),
    ("Languages", ("english", "spanish", "french", "german", "chinese", "language")),
]

_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    (skill, re.compile(r"\b(" + "|".join(re.escape(k) for k in keywords) + r")\b", re.IGNORECASE))
    for skill, keywords in SKILL_KEYWORDS
]


def detect_skill(title: str) -> str:
    """Map a task title to the skill its badge certifies."""
    for skill, pattern in _PATTERNS:
        if pattern.search(title):
            return skill
    return DEFAULT_SKILL


def badge_image_url(skill: str) -> str:
    slug = skill.lower().replace("/", "-").replace(" ", "-")
    return f"/badges/{slug}.svg"


def generate_token_id() -> str:
    return TOKEN_PREFIX + secrets.token_hex(TOKEN_HEX_LENGTH // 2)
