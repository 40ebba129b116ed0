"""
Access to the ``BOARD`` settings dict with defaults.

Read lazily on every call so ``override_settings(BOARD=...)`` takes effect
in tests.
"""
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

DEFAULTS = {
    'RANKING_STRATEGY': 'decay',
    'VOTE_RULESETS': {
        'post': 'updown',
        'comment': 'up_only',
    },
    'DEFAULT_LIST_LIMIT': 30,
    'MAX_LIST_LIMIT': 100,
}

# Allowed vote values per ruleset name
RULESETS = {
    'updown': frozenset({1, -1}),
    'up_only': frozenset({1}),
}


def board_setting(name):
    user_settings = getattr(settings, 'BOARD', {})
    if name not in DEFAULTS:
        raise ImproperlyConfigured(f"Unknown BOARD setting: {name}")
    return user_settings.get(name, DEFAULTS[name])


def allowed_vote_types(target_kind: str) -> frozenset:
    """Vote values accepted for ``target_kind`` under the active ruleset."""
    rulesets = {**DEFAULTS['VOTE_RULESETS'], **board_setting('VOTE_RULESETS')}
    ruleset = rulesets.get(target_kind)
    if ruleset not in RULESETS:
        raise ImproperlyConfigured(
            f"BOARD['VOTE_RULESETS'][{target_kind!r}] must be one of "
            f"{sorted(RULESETS)}, got {ruleset!r}"
        )
    return RULESETS[ruleset]
