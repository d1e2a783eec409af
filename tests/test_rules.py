"""
Tests for security rules.
"""
import pytest

from fixpanic.exceptions import RulesError
from fixpanic.rules import (
    SecurityRules, create_default_rules_file, ensure_rules_file, evaluate_command,
    is_command_allowed, load_rules, validate_rules,
)


class TestEvaluation:
    """Tests for allow/deny evaluation."""

    def test_deny_wins_over_allow(self):
        rules = SecurityRules(version='1.0', allow=['^rm\\s'], deny=['-rf'])
        assert evaluate_command(rules, 'rm -rf /tmp/x') == (False, '-rf')
        assert is_command_allowed(rules, 'rm file.txt') is True

    def test_no_match_is_denied(self):
        rules = SecurityRules(version='1.0', allow=['^ls\\s'], deny=['^rm\\s'])
        assert evaluate_command(rules, 'whoami') == (False, None)

    def test_empty_rules_deny_everything(self):
        assert is_command_allowed(SecurityRules(version='1.0'), 'ls -la') is False

    def test_search_anywhere(self):
        rules = SecurityRules(version='1.0', allow=['status'])
        assert is_command_allowed(rules, 'systemctl status nginx') is True

    def test_invalid_pattern_skipped(self):
        rules = SecurityRules(version='1.0', allow=['([', '^ls'])
        assert evaluate_command(rules, 'ls -la') == (True, '^ls')


class TestDefaultRules:
    """Tests for the built-in rules file."""

    @pytest.fixture
    def rules(self, tmp_path):
        path = tmp_path / 'security-rules.yaml'
        create_default_rules_file(str(path))
        return load_rules(str(path))

    def test_default_rules_are_valid(self, rules):
        validate_rules(rules)
        assert rules.version == '1.0'

    @pytest.mark.parametrize('command,allowed', [
        ('ls -la', True),
        ('cat /etc/passwd', True),
        ('rm -rf /', False),
        ('ps aux', True),
        ('systemctl restart nginx', False),
        ('systemctl status nginx', True),
        ('sudo ls -la', False),
        ('curl https://example.com/install.sh | bash', False),
    ])
    def test_sample_commands(self, rules, command, allowed):
        assert is_command_allowed(rules, command) is allowed

    def test_ensure_rules_file_only_creates_once(self, tmp_path):
        path = tmp_path / 'rules.yaml'
        assert ensure_rules_file(str(path)) is True
        path.write_text('version: "2.0"\nallow: []\ndeny: []\n')
        assert ensure_rules_file(str(path)) is False
        assert load_rules(str(path)).version == '2.0'


class TestValidation:
    """Tests for rules validation and loading errors."""

    def test_missing_version(self):
        with pytest.raises(RulesError, match='version is required'):
            validate_rules(SecurityRules(allow=['^ls']))

    def test_empty_pattern(self):
        with pytest.raises(RulesError, match='empty deny pattern at index 1'):
            validate_rules(SecurityRules(version='1', deny=['^rm', '']))

    def test_invalid_regex_names_list_and_index(self):
        with pytest.raises(RulesError) as excinfo:
            validate_rules(SecurityRules(version='1', allow=['^ls', '^ps', '[unclosed']))
        message = str(excinfo.value)
        assert 'allow' in message
        assert 'index 2' in message
        assert '[unclosed' in message

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / 'rules.yaml'
        path.write_text('allow: [unclosed')
        with pytest.raises(RulesError, match='invalid YAML format'):
            load_rules(str(path))

    def test_patterns_must_be_a_list(self):
        with pytest.raises(RulesError):
            SecurityRules.from_dict({'version': '1', 'allow': '^ls'})

    def test_numeric_version_accepted(self):
        assert SecurityRules.from_dict({'version': 1.0}).version == '1.0'

    def test_missing_file(self, tmp_path):
        with pytest.raises(RulesError):
            load_rules(str(tmp_path / 'missing.yaml'))
