"""Skill detection and token id tests."""

import re

import pytest

from educhain.badges.skills import DEFAULT_SKILL, badge_image_url, detect_skill, generate_token_id


class TestDetectSkill:
    @pytest.mark.parametrize(
        "title,skill",
        [
            ("Write a Solidity escrow contract", "Smart Contracts"),
            ("Bitcoin basics", "Blockchain"),
            ("Machine learning with Python", "Machine Learning"),
            ("Intro to Python loops", "Python"),
            ("Cleaning data with pandas", "Data Science"),
            ("React hooks in depth", "JavaScript/TypeScript"),
            ("Calculus II: integrals", "Mathematics"),
            ("Persuasive essay structure", "Writing"),
        ],
    )
    def test_keyword_match(self, title, skill):
        assert detect_skill(title) == skill

    def test_first_match_wins(self):
        """Smart Contracts is listed before Blockchain."""
        assert detect_skill("Ethereum smart contracts") == "Smart Contracts"

    @pytest.mark.parametrize("title", ["Watercolor painting", "Maintaining a garden", ""])
    def test_whole_words_only(self, title):
        assert detect_skill(title) == DEFAULT_SKILL


class TestBadgeAssets:
    def test_image_url_slug(self):
        assert badge_image_url("JavaScript/TypeScript") == "/badges/javascript-typescript.svg"
        assert badge_image_url(DEFAULT_SKILL) == "/badges/general-knowledge.svg"

    def test_token_ids_are_unique(self):
        ids = {generate_token_id() for _ in range(100)}
        assert len(ids) == 100
        assert all(re.fullmatch(r"POL-[0-9a-f]{32}", i) for i in ids)
