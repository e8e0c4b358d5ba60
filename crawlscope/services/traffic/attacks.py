"""Attack path detection.

Goals:
- Recognize vulnerability scanners by the paths they probe.
- Keep one implementation for both the classifier and the enrichment flags.
- Avoid flagging legitimate ``.php`` assets: web shell names only count when
  the path also carries a suspicious token.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from crawlscope.domain.enums import Category
from crawlscope.utils.addresses import split_list


def _compile(*patterns, flags=re.IGNORECASE):
    return tuple(re.compile(p, flags) for p in patterns)


_WORDPRESS_PATTERNS = _compile(
    r'^/wp-admin',
    r'^/wp-login',
    r'^/wp/',
    r'wp-config',
    r'xmlrpc\.php',
    r'wp-json/wp/v2/users',
    r'/wp-content/(plugins|themes)',
    r'/wp-includes/',
    r'wp-cron\.php',
    r'readme\.html$',
    r'license\.txt$',
)

_WEBSHELL_PATTERNS = _compile(
    r'\.(php|asp|aspx|jsp)$',
    r'alfa\.php',
    r'c99\.php',
    r'shell\.php',
    r'cmd\.php',
    r'admin\.php',
    r'upload\.php',
    r'ALFA_DATA',
    r'alfacgiapi',
)

_CONFIG_PATTERNS = _compile(
    r'/\.env',
    r'/config\.(php|json|yml|yaml)',
    r'/\.git',
    r'/\.svn',
    r'phpmyadmin',
    r'/pma/',
    r'dbadmin',
    r'sqladmin',
    r'mysqladmin',
)

_EXPLOIT_PATTERNS = (
    re.compile(r'\.\.(/|\\)'),
    *_compile(
        r'<script>',
        r'union.*select',
        r'eval\(',
        r'base64_decode',
        r'system\(',
        r'exec\(',
        r'passthru\(',
    ),
)

DEFAULT_WEBSHELL_TOKENS = (
    'alfa',
    'c99',
    'shell',
    'cmd',
    'admin/upload',
    'alfa_data',
    'alfacgiapi',
    'lock360',
    'function.php',
)


@dataclass(frozen=True)
class AttackMatch:
    category: Category
    identity_name: str
    reason: str


WORDPRESS_SCANNER = AttackMatch(Category.ATTACK_WORDPRESS_SCANNER, 'WordPress-Scanner', 'WordPress vulnerability scanning')
WEBSHELL_SCANNER = AttackMatch(Category.ATTACK_WEBSHELL_SCANNER, 'WebShell-Scanner', 'Web shell / backdoor scanning')
CONFIG_SCANNER = AttackMatch(Category.ATTACK_CONFIG_SCANNER, 'Config-Scanner', 'Configuration file / database scanner')
EXPLOIT_SCANNER = AttackMatch(Category.ATTACK_EXPLOIT_ATTEMPT, 'Exploit-Scanner', 'Active exploit attempt detected')


@dataclass(frozen=True)
class AttackRules:
    """Tunable parts of attack detection."""

    webshell_tokens: tuple[str, ...] = DEFAULT_WEBSHELL_TOKENS

    def __post_init__(self):
        tokens = tuple(t.strip().lower() for t in self.webshell_tokens if t and t.strip())
        object.__setattr__(self, 'webshell_tokens', tokens)

    @classmethod
    def from_config(cls, value) -> 'AttackRules':
        tokens = split_list(value)
        return cls(tuple(tokens)) if tokens else cls()

    def is_suspicious_webshell(self, path: str) -> bool:
        if not any(p.search(path) for p in _WEBSHELL_PATTERNS):
            return False
        lowered = path.lower()
        return any(token in lowered for token in self.webshell_tokens)


DEFAULT_ATTACK_RULES = AttackRules()


def detect_attack(path: str | None, rules: AttackRules = DEFAULT_ATTACK_RULES) -> AttackMatch | None:
    """Return the first matching attack sub-rule for ``path``, else None."""
    p = path or ''
    if not p:
        return None
    if any(pattern.search(p) for pattern in _WORDPRESS_PATTERNS):
        return WORDPRESS_SCANNER
    if rules.is_suspicious_webshell(p):
        return WEBSHELL_SCANNER
    if any(pattern.search(p) for pattern in _CONFIG_PATTERNS):
        return CONFIG_SCANNER
    if any(pattern.search(p) for pattern in _EXPLOIT_PATTERNS):
        return EXPLOIT_SCANNER
    return None


def is_obvious_attack_path(path: str | None, rules: AttackRules = DEFAULT_ATTACK_RULES) -> bool:
    return detect_attack(path, rules) is not None
