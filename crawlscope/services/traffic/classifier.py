"""Four-stage traffic classification waterfall.

Stages, first match wins:

1. Human gate: browser fetch metadata, client hints or an HTML ``Accept``,
   residential origin, no automation markers, human request rate.
2. Attack traffic, from the request path only.
3. Bot type: declared AI bot, traditional crawler, monitoring service,
   datacenter crawler, stealth AI (in that order).
4. Undetermined bot.

Stages are plain functions ``rule(event, session, attack_rules)`` returning a
``ClassificationResult`` or ``None``; ``CLASSIFICATION_RULES`` fixes their order.
Nothing here performs I/O, so ``classify`` is deterministic for a given event.
"""

from __future__ import annotations

from crawlscope.domain.enums import Category, DetectionTier
from crawlscope.domain.headers import has_any_header
from crawlscope.domain.records import ClassificationResult, NormalizedEvent, SessionAggregate
from crawlscope.services.traffic import signatures as sig
from crawlscope.services.traffic.attacks import DEFAULT_ATTACK_RULES, AttackRules, detect_attack
from crawlscope.services.traffic.signals import accepts_html, has_client_hints, has_fetch_intent

MAX_HUMAN_RATE = 0.5  # requests per second, sustained

HUMAN_REASON = 'Passed all human verification checks'
UNDETERMINED_IDENTITY = 'Undetermined-Bot'


# ---------------------------------------------------------------------------
# Stage 1: human gate
# ---------------------------------------------------------------------------

def _has_automation_markers(event: NormalizedEvent) -> bool:
    if sig.is_headless_user_agent(event.user_agent):
        return True
    return has_any_header(event.headers, sig.AUTOMATION_HEADERS)


def _rate_exceeded(session: SessionAggregate | None) -> bool:
    if session is None or session.window_seconds <= 0:
        return False
    return session.rate > MAX_HUMAN_RATE


HUMAN_GATE_CHECKS = (
    ('fetch_intent', lambda e, s: has_fetch_intent(e.headers)),
    ('browser_fingerprint', lambda e, s: has_client_hints(e.headers) or accepts_html(e.headers)),
    ('residential_origin', lambda e, s: not e.datacenter_provider),
    ('no_automation', lambda e, s: not _has_automation_markers(e)),
    ('human_rate', lambda e, s: not _rate_exceeded(s)),
)


def human_gate_failures(event: NormalizedEvent, session: SessionAggregate | None = None) -> list[str]:
    """Names of the human-gate conditions ``event`` fails (empty means human)."""
    return [name for name, check in HUMAN_GATE_CHECKS if not check(event, session)]


def human_gate(event, session, attack_rules):
    for _name, check in HUMAN_GATE_CHECKS:
        if not check(event, session):
            return None
    return ClassificationResult.human(HUMAN_REASON)


# ---------------------------------------------------------------------------
# Stage 2: attack traffic
# ---------------------------------------------------------------------------

def attack_traffic(event, session, attack_rules):
    match = detect_attack(event.path, attack_rules)
    if match is None:
        return None
    return ClassificationResult.bot(match.category, match.identity_name, DetectionTier.SIGNATURE, match.reason)


# ---------------------------------------------------------------------------
# Stage 3: bot type
# ---------------------------------------------------------------------------

def official_ai(event, session, attack_rules):
    name = sig.match_table(sig.OFFICIAL_AI_BOTS, event.user_agent)
    if name is None:
        return None
    return ClassificationResult.bot(
        Category.AI_OFFICIAL, name, DetectionTier.SIGNATURE, 'Official AI bot declared in User-Agent'
    )


def web_crawler(event, session, attack_rules):
    ua = event.user_agent
    if not ua:
        return None
    name = sig.match_table(sig.WEB_CRAWLERS, ua)
    if name is not None:
        return ClassificationResult.bot(Category.WEB_CRAWLER, name, DetectionTier.SIGNATURE, 'Traditional web crawler')
    if sig.is_headless_user_agent(ua):
        return ClassificationResult.bot(
            Category.WEB_CRAWLER, 'Headless-Browser', DetectionTier.SIGNATURE, 'Headless browser automation detected'
        )
    if sig.GENERIC_BOT_PATTERN.search(ua):
        return ClassificationResult.bot(
            Category.WEB_CRAWLER, 'Generic-Crawler', DetectionTier.SIGNATURE, 'Generic bot/crawler pattern in User-Agent'
        )
    return None


def monitoring_service(event, session, attack_rules):
    ua = event.user_agent
    name = sig.match_table(sig.MONITORING_SERVICES, ua)
    if name is not None:
        return ClassificationResult.bot(
            Category.MONITORING_SERVICE, name, DetectionTier.HEURISTIC, 'Uptime/monitoring service'
        )

    if sig.CLOUDFLARE_CHALLENGE_PATH in (event.path or '') or (ua and sig.CLOUDFLARE_HOSTNAME_UA.search(ua)):
        return ClassificationResult.bot(
            Category.MONITORING_SERVICE,
            'Cloudflare-Verify',
            DetectionTier.HEURISTIC,
            'Cloudflare custom hostname verification',
        )

    provider = event.datacenter_provider
    if provider and not ua and event.path in sig.SIMPLE_ROOT_PATHS:
        return ClassificationResult.bot(
            Category.MONITORING_SERVICE,
            f'{provider.upper()}-Monitor',
            DetectionTier.HEURISTIC,
            f'{provider} availability check (no UA, simple path)',
        )
    return None


def datacenter_crawler(event, session, attack_rules):
    provider = event.datacenter_provider
    if not provider:
        return None
    if event.user_agent and len(event.user_agent) > sig.SHORT_USER_AGENT_MAX:
        return None
    if event.path in sig.SIMPLE_ROOT_PATHS:
        return None
    return ClassificationResult.bot(
        Category.AI_STEALTH,
        f'{provider.upper()}-Crawler',
        DetectionTier.HEURISTIC,
        f'{provider} datacenter + no UA + content path (systematic crawling)',
    )


def stealth_ai(event, session, attack_rules):
    provider = event.datacenter_provider
    if not provider or not sig.is_browser_user_agent(event.user_agent):
        return None
    if has_fetch_intent(event.headers):
        return None
    return ClassificationResult.bot(
        Category.AI_STEALTH,
        f'{provider.upper()}-Stealth-AI',
        DetectionTier.HEURISTIC,
        'Datacenter + browser UA + missing Sec-Fetch headers',
    )


# ---------------------------------------------------------------------------
# Stage 4: fallback
# ---------------------------------------------------------------------------

def undetermined(event: NormalizedEvent) -> ClassificationResult:
    reasons = []
    if not event.user_agent:
        reasons.append('No User-Agent')
    if event.datacenter_provider:
        reasons.append(f'Datacenter: {event.datacenter_provider}')
    if not has_fetch_intent(event.headers):
        reasons.append('Missing Sec-Fetch headers')
    reason = ', '.join(reasons) if reasons else 'Failed human verification checks'
    return ClassificationResult.bot(Category.BOT_UNDETERMINED, UNDETERMINED_IDENTITY, DetectionTier.FALLBACK, reason)


CLASSIFICATION_RULES = (
    ('human_gate', human_gate),
    ('attack_traffic', attack_traffic),
    ('official_ai', official_ai),
    ('web_crawler', web_crawler),
    ('monitoring_service', monitoring_service),
    ('datacenter_crawler', datacenter_crawler),
    ('stealth_ai', stealth_ai),
)


class TrafficClassifier:
    """Runs ``CLASSIFICATION_RULES`` in order with a fixed set of attack rules."""

    def __init__(self, attack_rules: AttackRules = DEFAULT_ATTACK_RULES, rules=CLASSIFICATION_RULES):
        self.attack_rules = attack_rules
        self.rules = tuple(rules)

    def explain(self, event: NormalizedEvent, session: SessionAggregate | None = None):
        """Return ``(stage_name, result)`` for the rule that decided ``event``."""
        for name, rule in self.rules:
            result = rule(event, session, self.attack_rules)
            if result is not None:
                return name, result
        return 'undetermined', undetermined(event)

    def classify(self, event: NormalizedEvent, session: SessionAggregate | None = None) -> ClassificationResult:
        return self.explain(event, session)[1]


_default_classifier = TrafficClassifier()


def classify(event: NormalizedEvent, session: SessionAggregate | None = None) -> ClassificationResult:
    return _default_classifier.classify(event, session)
