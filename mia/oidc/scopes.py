"""Recognized OAuth scopes and their consent-screen descriptions."""

DEFAULT_SCOPE = "openid"

SCOPE_DESCRIPTIONS: dict[str, str] = {
    "openid": "Verify your identity",
    "profile": "Access your name and profile picture",
    "email": "Access your email address",
    "offline_access": "Stay connected when you are not using the app",
    "meetings:read": "Read your meeting list and recordings",
    "meetings:summary": "Summarize meetings and extract action items",
    "tasks:write": "Create tasks in your task manager",
    "email:draft": "Draft follow-up emails",
}

VALID_SCOPES = frozenset(SCOPE_DESCRIPTIONS)


def parse_scope(scope: str | None) -> list[str]:
    """Split a space-delimited scope string, dropping duplicates."""
    seen: list[str] = []
    for item in (scope or "").split():
        if item not in seen:
            seen.append(item)
    return seen


def unknown_scopes(scopes: list[str]) -> list[str]:
    return [s for s in scopes if s not in VALID_SCOPES]


def describe(scopes: list[str]) -> list[dict[str, str]]:
    return [{"name": s, "description": SCOPE_DESCRIPTIONS[s]} for s in scopes]
