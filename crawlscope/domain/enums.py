from __future__ import annotations

from enum import Enum


class Category(str, Enum):
    """Closed traffic category vocabulary.

    Values are stored verbatim in ``traffic_events.category``; downstream
    reports match on the literal set, so adding a member is a breaking change.
    """

    HUMAN = 'human'
    AI_OFFICIAL = 'ai_official'
    AI_STEALTH = 'ai_stealth'
    WEB_CRAWLER = 'web_crawler'
    MONITORING_SERVICE = 'monitoring_service'
    BOT_UNDETERMINED = 'bot_undetermined'
    ATTACK_WORDPRESS_SCANNER = 'attack_wordpress_scanner'
    ATTACK_WEBSHELL_SCANNER = 'attack_webshell_scanner'
    ATTACK_CONFIG_SCANNER = 'attack_config_scanner'
    ATTACK_EXPLOIT_ATTEMPT = 'attack_exploit_attempt'

    @property
    def is_attack(self) -> bool:
        return self.value.startswith('attack_')


class DetectionTier:
    """Provenance of a verdict."""

    SIGNATURE = 1
    HEURISTIC = 2
    FALLBACK = 3

    ALL = (SIGNATURE, HEURISTIC, FALLBACK)
