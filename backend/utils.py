# OSRS Agent - Formatting Helpers
# Turns raw API payloads (prices, Wise Old Man stats/gains, search results) into prompt text.

from typing import List, Optional

from bs4 import BeautifulSoup

# Skills worth showing the model when summarising an account.
IMPORTANT_SKILLS = [
    "attack", "strength", "defence", "hitpoints", "ranged", "prayer", "magic",
    "slayer", "farming", "herblore", "construction", "hunter",
]


# ─────────────────────────────────────────
# TEXT
# ─────────────────────────────────────────

def strip_html(fragment: str) -> str:
    """Wiki search snippets come back with <span class="searchmatch"> highlighting."""
    if not fragment:
        return ""
    return BeautifulSoup(fragment, "html.parser").get_text()


def truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


# ─────────────────────────────────────────
# PRICES
# ─────────────────────────────────────────

def format_price(price: Optional[int]) -> str:
    """e.g. 1500000 -> "1.50M", 2500 -> "2.5K", 950 -> "950"."""
    if price is None:
        return "N/A"
    if price >= 1_000_000_000:
        return f"{price / 1_000_000_000:.2f}B"
    if price >= 1_000_000:
        return f"{price / 1_000_000:.2f}M"
    if price >= 1_000:
        return f"{price / 1_000:.1f}K"
    return f"{price:,}"


def format_price_summary(price) -> str:
    lines = [
        f"## {price.item_name} - Current Prices",
        "",
        f"- **Instant Buy (High):** {format_price(price.high_price)} gp",
        f"- **Instant Sell (Low):** {format_price(price.low_price)} gp",
        f"- **Average Price:** {format_price(price.avg_price)} gp",
    ]
    if price.volume is not None:
        lines.append(f"- **Hourly Volume:** {price.volume:,} traded")
    lines.append("")
    lines.append(f"_[View on Wiki]({price.wiki_url})_")
    return "\n".join(lines)


# ─────────────────────────────────────────
# WISE OLD MAN
# ─────────────────────────────────────────

def _skills(player: Optional[dict]) -> dict:
    snapshot = (player or {}).get("latestSnapshot") or {}
    return (snapshot.get("data") or {}).get("skills") or {}


def format_stats_summary(player: Optional[dict]) -> str:
    """
    Summary of a Wise Old Man player payload. Total level is read from the
    "overall" skill rather than summed, so it matches what the game shows.
    """
    skills = _skills(player)
    if not skills:
        return "No stats available"

    total_level = (skills.get("overall") or {}).get("level", 0)
    lines = [
        f"Total Level: {total_level}",
        f"Combat Level: {player.get('combatLevel', 'Unknown')}",
        f"Account Type: {player.get('type', 'Unknown')}",
        "",
        "Key Stats:",
    ]
    for skill_name in IMPORTANT_SKILLS:
        skill = skills.get(skill_name)
        if skill:
            lines.append(f"- {skill_name.capitalize()}: {skill.get('level')}")
    return "\n".join(lines)


def format_gains_summary(gains: Optional[dict], limit: int = 5) -> str:
    skills = ((gains or {}).get("data") or {}).get("skills") or {}
    if not skills:
        return "No recent gains available"

    gained = []
    for name, data in skills.items():
        if name == "overall":
            continue
        xp = ((data or {}).get("experience") or {}).get("gained", 0)
        if xp > 0:
            gained.append((name, xp))
    gained.sort(key=lambda g: g[1], reverse=True)

    if not gained:
        return "No recent XP gains"

    lines = ["Recent XP Gains (past week):"]
    for name, xp in gained[:limit]:
        lines.append(f"- {name.capitalize()}: +{xp:,} XP")
    return "\n".join(lines)


# ─────────────────────────────────────────
# SEARCH RESULTS
# ─────────────────────────────────────────

def format_search_results(results: List, max_chars: int = 300) -> str:
    if not results:
        return "No search results found."
    formatted = []
    for i, result in enumerate(results, start=1):
        formatted.append(f"[{i}] {result.title}\nURL: {result.url}\n{truncate(result.content, max_chars)}")
    return "\n\n".join(formatted)
