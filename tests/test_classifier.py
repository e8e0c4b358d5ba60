import itertools

import pytest

from crawlscope.domain.enums import Category
from crawlscope.domain.records import SessionAggregate
from crawlscope.services.traffic.attacks import AttackRules
from crawlscope.services.traffic.classifier import (
    CLASSIFICATION_RULES,
    TrafficClassifier,
    classify,
    human_gate_failures,
)

from factories import CHROME_UA, GPTBOT_UA, HEADLESS_UA, make_event

MINIMAL_BROWSER = {'Sec-Fetch-Site': ['none'], 'Sec-Ch-Ua': ['"Chrome"']}


def test_scenario_a_desktop_browser_is_human():
    result = classify(make_event(headers=MINIMAL_BROWSER))

    assert result.category == Category.HUMAN
    assert result.is_bot is False
    assert result.detection_tier is None
    assert result.identity_name is None
    assert result.reason == 'Passed all human verification checks'


def test_accept_html_substitutes_for_client_hints():
    headers = {'Sec-Fetch-Mode': ['navigate'], 'Accept': ['text/html,*/*;q=0.8']}
    assert classify(make_event(headers=headers)).category == Category.HUMAN


def test_scenario_b_headless_browser_is_crawler_despite_fetch_headers():
    result = classify(make_event(user_agent=HEADLESS_UA, headers={'Sec-Fetch-Site': ['same-origin']}))

    assert result.category == Category.WEB_CRAWLER
    assert result.identity_name == 'Headless-Browser'
    assert result.detection_tier == 1


@pytest.mark.parametrize('provider', [None, 'azure'])
def test_scenario_c_declared_ai_bot(provider):
    result = classify(make_event(user_agent=GPTBOT_UA, headers={}, provider=provider))

    assert result.category == Category.AI_OFFICIAL
    assert result.identity_name == 'GPTBot'
    assert result.detection_tier == 1


@pytest.mark.parametrize('user_agent', [CHROME_UA, GPTBOT_UA, None, 'curl/8.4.0'])
def test_scenario_d_wordpress_admin_probe(user_agent):
    result = classify(make_event(path='/wp-admin/admin.php', user_agent=user_agent, headers={}))

    assert result.category == Category.ATTACK_WORDPRESS_SCANNER
    assert result.identity_name == 'WordPress-Scanner'
    assert result.detection_tier == 1


def test_scenario_e_datacenter_browser_without_fetch_headers_is_stealth_ai():
    result = classify(make_event(user_agent=CHROME_UA, headers={}, provider='azure'))

    assert result.category == Category.AI_STEALTH
    assert result.identity_name == 'AZURE-Stealth-AI'
    assert result.detection_tier == 2


def test_scenario_f_datacenter_without_user_agent():
    root = classify(make_event(path='/', user_agent=None, headers={}, provider='azure'))
    content = classify(make_event(path='/articles/42', user_agent=None, headers={}, provider='azure'))

    assert root.category == Category.MONITORING_SERVICE
    assert root.identity_name == 'AZURE-Monitor'
    assert content.category == Category.AI_STEALTH
    assert content.identity_name == 'AZURE-Crawler'


def test_short_user_agent_from_datacenter_counts_as_crawler():
    result = classify(make_event(path='/pricing', user_agent='Go-http-client/1.1', headers={}, provider='hetzner'))
    # "http" in the UA matches the generic crawler pattern first
    assert result.category == Category.WEB_CRAWLER

    result = classify(make_event(path='/pricing', user_agent='axios/1.6.0', headers={}, provider='hetzner'))
    assert result.category == Category.AI_STEALTH
    assert result.identity_name == 'HETZNER-Crawler'


def test_attack_stage_precedes_declared_ai():
    result = classify(make_event(path='/wp-login.php', user_agent=GPTBOT_UA, headers={}))
    assert result.category == Category.ATTACK_WORDPRESS_SCANNER


def test_human_gate_precedes_attack_rules():
    # Stage order is preserved even when a real browser requests a probe-looking path.
    result = classify(make_event(path='/.env', headers=MINIMAL_BROWSER))
    assert result.category == Category.HUMAN


class TestHumanGateNecessity:
    def _base(self, **overrides):
        params = {'headers': dict(MINIMAL_BROWSER)}
        params.update(overrides)
        return make_event(**params)

    def test_base_event_is_human(self):
        assert classify(self._base()).category == Category.HUMAN
        assert human_gate_failures(self._base()) == []

    def test_without_fetch_intent(self):
        event = self._base(headers={'Sec-Ch-Ua': ['"Chrome"']})
        assert classify(event).category != Category.HUMAN
        assert human_gate_failures(event) == ['fetch_intent']

    def test_without_browser_fingerprint(self):
        event = self._base(headers={'Sec-Fetch-Site': ['none']})
        assert classify(event).category != Category.HUMAN
        assert human_gate_failures(event) == ['browser_fingerprint']

    def test_from_datacenter(self):
        event = self._base(provider='azure')
        assert classify(event).category != Category.HUMAN
        assert human_gate_failures(event) == ['residential_origin']

    def test_with_automation_user_agent(self):
        event = self._base(user_agent=HEADLESS_UA)
        assert classify(event).category != Category.HUMAN
        assert human_gate_failures(event) == ['no_automation']

    def test_with_remote_debugging_header(self):
        headers = dict(MINIMAL_BROWSER, **{'X-DevTools-Emulate-Network-Conditions-Client-Id': ['abc']})
        event = self._base(headers=headers)
        assert classify(event).category != Category.HUMAN
        assert human_gate_failures(event) == ['no_automation']

    def test_with_sustained_high_rate(self):
        session = SessionAggregate(request_count=10, window_seconds=5)
        result = classify(self._base(), session)

        assert result.category == Category.BOT_UNDETERMINED
        # None of the fallback's diagnostics apply to a rate failure.
        assert result.reason == 'Failed human verification checks'

    def test_rate_rule_skipped_for_zero_window(self):
        session = SessionAggregate(request_count=3, window_seconds=0)
        assert classify(self._base(), session).category == Category.HUMAN

    def test_rate_at_limit_is_still_human(self):
        session = SessionAggregate(request_count=3, window_seconds=6)
        assert classify(self._base(), session).category == Category.HUMAN


@pytest.mark.parametrize('user_agent, identity', [
    ('Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)', 'Googlebot'),
    ('Mozilla/5.0 (compatible; bingbot/2.0; +http://www.bing.com/bingbot.htm)', 'Bingbot'),
    ('Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_5) AppleWebKit/605.1.15 (KHTML, like Gecko) '
     'Version/13.1.1 Safari/605.1.15 (Applebot/0.1)', 'Applebot'),
    ('facebookexternalhit/1.1', 'facebookexternalhit'),
    ('python-requests/2.31.0', 'Generic-Crawler'),
    ('curl/8.4.0', 'Generic-Crawler'),
])
def test_web_crawlers(user_agent, identity):
    result = classify(make_event(user_agent=user_agent, headers={}))
    assert result.category == Category.WEB_CRAWLER
    assert result.identity_name == identity


@pytest.mark.parametrize('user_agent, identity', [
    ('Mozilla/5.0 (compatible; ClaudeBot/1.0; +claudebot@anthropic.com)', 'ClaudeBot'),
    ('Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_5) AppleWebKit/605.1.15 (KHTML, like Gecko) '
     'Version/13.1.1 Safari/605.1.15 (Applebot-Extended/0.1)', 'Applebot-Extended'),
    ('Mozilla/5.0 AppleWebKit/537.36 (KHTML, like Gecko; compatible; PerplexityBot/1.0)', 'PerplexityBot'),
    ('meta-externalagent/1.1 (+https://developers.facebook.com/docs/sharing/webmasters/crawler)', 'Meta-ExternalAgent'),
])
def test_official_ai_bots(user_agent, identity):
    result = classify(make_event(user_agent=user_agent, headers={}))
    assert result.category == Category.AI_OFFICIAL
    assert result.identity_name == identity


def test_monitoring_signature():
    ua = CHROME_UA + ' StatusCake'
    result = classify(make_event(user_agent=ua, headers={}))

    assert result.category == Category.MONITORING_SERVICE
    assert result.identity_name == 'StatusCake'
    assert result.detection_tier == 2


def test_monitor_with_bot_keyword_is_caught_by_generic_crawler_first():
    result = classify(make_event(user_agent='Mozilla/5.0 (compatible; UptimeRobot/2.0; http://www.uptimerobot.com/)', headers={}))
    assert result.category == Category.WEB_CRAWLER


def test_cloudflare_hostname_challenge_path():
    result = classify(make_event(path='/.well-known/cf-custom-hostname-challenge/1234', user_agent=None, headers={}))
    assert result.category == Category.MONITORING_SERVICE
    assert result.identity_name == 'Cloudflare-Verify'


class TestFallback:
    def test_reason_lists_missing_signals(self):
        result = classify(make_event(path='/about', user_agent=None, headers={}))

        assert result.category == Category.BOT_UNDETERMINED
        assert result.identity_name == 'Undetermined-Bot'
        assert result.detection_tier == 3
        assert result.reason == 'No User-Agent, Missing Sec-Fetch headers'

    def test_reason_mentions_datacenter(self):
        result = classify(make_event(path='/about', headers=MINIMAL_BROWSER, provider='azure'))

        assert result.category == Category.BOT_UNDETERMINED
        assert result.reason == 'Datacenter: azure'


def test_configurable_webshell_tokens():
    event = make_event(path='/blog/index.php', user_agent='curl/8.4.0', headers={})
    assert classify(event).category == Category.WEB_CRAWLER

    strict = TrafficClassifier(AttackRules(('index',)))
    assert strict.classify(event).category == Category.ATTACK_WEBSHELL_SCANNER


def test_rule_order_is_explicit():
    assert [name for name, _ in CLASSIFICATION_RULES] == [
        'human_gate',
        'attack_traffic',
        'official_ai',
        'web_crawler',
        'monitoring_service',
        'datacenter_crawler',
        'stealth_ai',
    ]


def test_explain_names_the_deciding_stage():
    classifier = TrafficClassifier()

    assert classifier.explain(make_event(headers=MINIMAL_BROWSER))[0] == 'human_gate'
    assert classifier.explain(make_event(path='/.git/config', headers={}))[0] == 'attack_traffic'
    assert classifier.explain(make_event(path='/about', user_agent=None, headers={}))[0] == 'undetermined'


def test_classify_is_deterministic():
    event = make_event(user_agent=CHROME_UA, headers={}, provider='azure')
    session = SessionAggregate(request_count=4, window_seconds=2)
    results = {classify(event, session) for _ in range(5)}
    assert len(results) == 1


def test_classify_is_total_and_never_human_from_datacenter():
    paths = ['/', '/articles/42', '/wp-admin/', '/uploads/alfa.php', '/.env', '/../../etc/passwd']
    agents = [None, '', CHROME_UA, HEADLESS_UA, GPTBOT_UA, 'curl/8.4.0', 'x']
    header_sets = [{}, MINIMAL_BROWSER, {'Accept': ['text/html']}, {'Sec-Fetch-Dest': ['document']}]
    providers = [None, 'azure', 'hosting']

    for path, ua, headers, provider in itertools.product(paths, agents, header_sets, providers):
        result = classify(make_event(path=path, user_agent=ua, headers=headers, provider=provider))
        assert isinstance(result.category, Category)
        assert result.is_bot == (result.category != Category.HUMAN)
        if provider:
            assert result.category != Category.HUMAN
