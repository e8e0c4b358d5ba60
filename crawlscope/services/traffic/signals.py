"""Header and path signals recorded on every event."""

from __future__ import annotations

from crawlscope.domain.headers import HeaderMap, first_header, has_any_header
from crawlscope.domain.records import RequestSignals
from crawlscope.services.traffic.attacks import DEFAULT_ATTACK_RULES, AttackRules, detect_attack

# Headers browsers attach to navigations. Sec-Fetch-User is only sent on
# user-activated requests, so the human gate does not require it.
FETCH_INTENT_HEADERS = ('Sec-Fetch-Site', 'Sec-Fetch-Mode', 'Sec-Fetch-Dest')
FETCH_METADATA_HEADERS = FETCH_INTENT_HEADERS + ('Sec-Fetch-User',)
CLIENT_HINT_HEADERS = ('Sec-Ch-Ua', 'Sec-Ch-Ua-Mobile', 'Sec-Ch-Ua-Platform')


def has_fetch_intent(headers: HeaderMap | None) -> bool:
    return has_any_header(headers, FETCH_INTENT_HEADERS)


def has_client_hints(headers: HeaderMap | None) -> bool:
    return has_any_header(headers, CLIENT_HINT_HEADERS)


def accepts_html(headers: HeaderMap | None) -> bool:
    accept = first_header(headers, 'Accept')
    return bool(accept) and 'text/html' in accept


def browser_signals(headers: HeaderMap | None) -> dict:
    return {
        'has_sec_fetch_headers': has_any_header(headers, FETCH_METADATA_HEADERS),
        'has_client_hints': has_client_hints(headers),
        'is_mobile': first_header(headers, 'Sec-Ch-Ua-Mobile') == '?1',
    }


def bot_headers(headers: HeaderMap | None) -> dict:
    return {
        'bot_from_email': first_header(headers, 'From'),
        'openai_host_hash': first_header(headers, 'X-Openai-Host-Hash'),
    }


def security_flags(headers: HeaderMap | None, path: str | None, rules: AttackRules = DEFAULT_ATTACK_RULES) -> dict:
    worker = first_header(headers, 'Cf-Worker')
    return {
        'has_proxy_worker_header': worker is not None,
        'proxy_worker_domain': worker,
        'is_exploit_attempt': detect_attack(path, rules) is not None,
    }


def extract_signals(headers: HeaderMap | None, path: str | None, rules: AttackRules = DEFAULT_ATTACK_RULES) -> RequestSignals:
    return RequestSignals(
        **browser_signals(headers),
        **bot_headers(headers),
        **security_flags(headers, path, rules),
    )
