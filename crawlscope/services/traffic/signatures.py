"""User-agent signature tables.

Tables are ordered ``(identity, pattern)`` tuples: the first matching entry
names the bot. Patterns are case-insensitive searches over the raw UA.
"""

from __future__ import annotations

import re


def _table(entries):
    return tuple((name, re.compile(pattern, re.IGNORECASE)) for name, pattern in entries)


OFFICIAL_AI_BOTS = _table((
    # OpenAI
    ('GPTBot', r'GPTBot'),
    ('OAI-SearchBot', r'OAI-SearchBot'),
    ('ChatGPT-User', r'ChatGPT-User'),
    # Anthropic
    ('ClaudeBot', r'ClaudeBot'),
    ('Claude-Web', r'Claude-Web'),
    # Google
    ('Google-Extended', r'Google-Extended'),
    ('Gemini-Deep-Research', r'Gemini-Deep-Research'),
    ('GoogleAgent-Mariner', r'GoogleAgent-Mariner'),
    # Perplexity
    ('PerplexityBot', r'PerplexityBot'),
    # Meta
    ('Meta-ExternalAgent', r'Meta-ExternalAgent'),
    ('Meta-ExternalFetcher', r'Meta-ExternalFetcher'),
    # Others
    ('Amazonbot', r'Amazonbot'),
    ('Applebot-Extended', r'Applebot-Extended'),
    ('Bytespider', r'Bytespider'),
    ('YouBot', r'YouBot'),
))

WEB_CRAWLERS = _table((
    ('Googlebot', r'Googlebot'),
    ('Bingbot', r'bingbot'),
    ('Yahoo-Slurp', r'Yahoo.*Slurp'),
    ('DuckDuckBot', r'DuckDuckBot'),
    ('Baiduspider', r'Baiduspider'),
    ('YandexBot', r'YandexBot'),
    ('Sogou', r'Sogou'),
    ('Exabot', r'Exabot'),
    ('facebookexternalhit', r'facebookexternalhit'),
    ('Twitterbot', r'Twitterbot'),
    ('LinkedInBot', r'LinkedInBot'),
    ('Slackbot', r'Slackbot'),
    ('Discordbot', r'Discordbot'),
    ('WhatsApp', r'WhatsApp'),
    ('TelegramBot', r'TelegramBot'),
    ('Applebot', r'Applebot(?!-Extended)'),
))

MONITORING_SERVICES = _table((
    ('Cloudflare-Verify', r'Cloudflare.*Verification'),
    ('Cloudflare-Health', r'Cloudflare.*Health'),
    ('UptimeRobot', r'UptimeRobot'),
    ('Pingdom', r'Pingdom'),
    ('StatusCake', r'StatusCake'),
    ('Site24x7', r'Site24x7'),
    ('Uptime.com', r'Uptime\.com'),
    ('Freshping', r'Freshping'),
    ('Monitor', r'^Monitor'),
    ('Uptime-Check', r'uptime.*check'),
    ('Availability-Check', r'availability.*check'),
))

CLOUDFLARE_HOSTNAME_UA = re.compile(r'Cloudflare.*Custom.*Hostname', re.IGNORECASE)
CLOUDFLARE_CHALLENGE_PATH = '.well-known/cf-custom-hostname-challenge'

HEADLESS_UA_PATTERNS = tuple(re.compile(p, re.IGNORECASE) for p in (
    r'HeadlessChrome',
    r'Puppeteer',
    r'Playwright',
    r'Selenium',
    r'PhantomJS',
    r'SlimerJS',
    r'electron',
))

# Remote-debugging markers some automation stacks leak as request headers.
AUTOMATION_HEADERS = (
    'X-DevTools-Emulate-Network-Conditions-Client-Id',
    'Webdriver',
)

GENERIC_BOT_PATTERN = re.compile(r'bot|crawler|spider|scraper|curl|wget|python|java|http', re.IGNORECASE)

BROWSER_ENGINE_TOKENS = ('Chrome', 'Safari', 'Firefox', 'Edge')

SIMPLE_ROOT_PATHS = frozenset({'/', '/robots.txt', '/favicon.ico', '/index.html', '/sitemap.xml'})

# Datacenter clients with a UA longer than this are not treated as bare scripts.
SHORT_USER_AGENT_MAX = 50


def match_table(table, user_agent: str | None) -> str | None:
    if not user_agent:
        return None
    for name, pattern in table:
        if pattern.search(user_agent):
            return name
    return None


def is_headless_user_agent(user_agent: str | None) -> bool:
    if not user_agent:
        return False
    if any(pattern.search(user_agent) for pattern in HEADLESS_UA_PATTERNS):
        return True
    return 'webdriver' in user_agent


def is_browser_user_agent(user_agent: str | None) -> bool:
    if not user_agent or 'Mozilla' not in user_agent:
        return False
    return any(token in user_agent for token in BROWSER_ENGINE_TOKENS)
