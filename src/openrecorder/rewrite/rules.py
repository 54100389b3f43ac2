"""URL-scoped rewrite rules for HTML and script responses.

Several video sites decide between adaptive (DASH) and progressive playback
from flags embedded in the page. Each rule flips those flags so the recorded
page asks for a stream that can be captured as a single resource.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass, field

Replacer = Callable[[re.Match], str]


def rule_replace(template: str) -> Replacer:
    """Build a replacer where ``{0}`` stands for the matched text."""

    def replace(match: re.Match) -> str:
        return template.replace('{0}', match.group(0))

    return replace


@dataclass
class DomainRule:
    """Regex rewrites applied to bodies served from urls containing any of ``contains``."""

    contains: tuple[str, ...] = ()
    rx_rules: list[tuple[re.Pattern, Replacer]] = field(default_factory=list)

    def matches(self, url: str) -> bool:
        return any(part in url for part in self.contains)

    def rewrite(self, text: str) -> str:
        for pattern, replacer in self.rx_rules:
            text = pattern.sub(replacer, text)
        return text


class RuleSet:
    """Ordered domain rules; the first rule matching a url wins."""

    def __init__(self, rules: list[DomainRule]):
        self.rules = rules
        self.default_rule = DomainRule()

    def get_rewriter(self, url: str) -> DomainRule:
        for rule in self.rules:
            if rule.matches(url):
                return rule
        return self.default_rule


BASE_RULES = RuleSet([
    DomainRule(
        contains=('youtube.com', 'youtube-nocookie.com'),
        rx_rules=[
            (re.compile(r'ytplayer\.load\(\);'),
             rule_replace('ytplayer.config.args.dash = "0"; ytplayer.config.args.dashmpd = ""; {0}')),
            (re.compile(r'yt\.setConfig.*PLAYER_CONFIG.*args":\s*{'),
             rule_replace('{0} "dash": "0", dashmpd: "", ')),
            (re.compile(r'yt\.setConfig.*PLAYER_VARS":\s*{'),
             rule_replace('{0}"dash":"0","dashmpd":"",')),
        ],
    ),
    DomainRule(
        contains=('facebook.com/', 'fbcdn.net/'),
        rx_rules=[
            (re.compile(r'"dash_'), rule_replace('"__nodash__')),
            (re.compile(r'_dash"'), rule_replace('__nodash__"')),
            (re.compile(r'_dash_'), rule_replace('__nodash__')),
        ],
    ),
    DomainRule(
        contains=('instagram.com/',),
        rx_rules=[
            (re.compile(r'"is_dash_eligible":(?:true|1)'), rule_replace('"is_dash_eligible":false')),
        ],
    ),
])
