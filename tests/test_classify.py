from cloak.proxy.classify import Route, classify, is_bot

SIGNATURES = ["Twitterbot"]


def test_no_target_always_serves_landing():
    for agent in (None, "", "Mozilla/5.0", "Twitterbot/1.0"):
        assert classify(has_target=False, user_agent=agent, signatures=SIGNATURES) is Route.LANDING


def test_ordinary_visitor_is_redirected():
    route = classify(has_target=True, user_agent="Mozilla/5.0 (X11; Linux x86_64)", signatures=SIGNATURES)
    assert route is Route.REDIRECT


def test_crawler_gets_preview():
    assert classify(has_target=True, user_agent="Twitterbot/1.0", signatures=SIGNATURES) is Route.PREVIEW


def test_missing_user_agent_is_not_a_bot():
    assert classify(has_target=True, user_agent=None, signatures=SIGNATURES) is Route.REDIRECT
    assert classify(has_target=True, user_agent="", signatures=SIGNATURES) is Route.REDIRECT


def test_match_is_case_sensitive_substring():
    assert is_bot("Mozilla/5.0 (compatible; Twitterbot/1.0)", SIGNATURES)
    assert not is_bot("twitterbot/1.0", SIGNATURES)


def test_signatures_are_configurable():
    signatures = ["Twitterbot", "Slackbot-LinkExpanding"]
    assert classify(has_target=True, user_agent="Slackbot-LinkExpanding 1.0", signatures=signatures) is Route.PREVIEW
    assert not is_bot("Twitterbot/1.0", [])
    assert not is_bot("Twitterbot/1.0", [""])
