from outreach_engine.services.policy_service import TermMatcher, build_policy, get_phrase_policy, normalize_for_matching


class TestNormalize:
    def test_casefold_and_whitespace(self):
        assert normalize_for_matching("  Nein   DANKE ") == "nein danke"

    def test_curly_apostrophe(self):
        assert normalize_for_matching("Don’t contact me") == "don't contact me"


class TestTermMatcher:
    def test_single_token_matches_whole_word_only(self):
        matcher = TermMatcher(["block", "sue"])
        assert matcher.find_all("please block me") == ["block"]
        assert matcher.find_all("blockchain is an issue") == []

    def test_trailing_star_matches_word_prefix(self):
        matcher = TermMatcher(["stop*", "block"])
        assert matcher.terms == ["stop", "block"]
        assert matcher.find_all("stopp!") == ["stop"]
        assert matcher.find_all("bitte stoppen") == ["stop"]
        assert matcher.find_all("nonstop") == []
        assert matcher.find_all("blockchain") == []

    def test_multi_word_terms_match_as_substring(self):
        matcher = TermMatcher(["remove me"])
        assert matcher.matches("please remove me now")


class TestBuildPolicy:
    def test_defaults_for_empty_document(self):
        policy = build_policy({})
        assert policy.rejection_override_enabled is True
        assert policy.rejection_override_intent == "not_interested"
        assert policy.soft_rejection_limit == 3
        assert policy.opt_out.find_all("stop") == []

    def test_override_can_be_disabled(self):
        policy = build_policy({"rejection_override": {"enabled": False, "phrases": ["nein danke"]}})
        assert policy.rejection_override_hit("nein danke") is None

    def test_invalid_pattern_is_skipped(self):
        policy = build_policy({"forbidden_patterns": ["(unclosed", "risk[\\s-]?free"]})
        assert len(policy.forbidden_patterns) == 1


class TestShippedPolicy:
    def test_shipped_policy_loads(self):
        policy = get_phrase_policy()
        assert "legal" in policy.escalation_categories
        assert policy.rejection_override_hit("nein danke, echt nicht") == "nein danke"
