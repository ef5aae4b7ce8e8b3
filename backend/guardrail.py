# Pre-generation guardrail: blocks prompt-injection attempts and requests that have nothing
# to do with Old School RuneScape before any model or tool call is made.
#
# The domain vocabulary is a safety net, not a topic classifier. It only keeps ambiguous but
# on-topic messages from being refused; off-topic text that happens to mention "bank" or
# "quest" gets through, and that is accepted.

import re

REFUSAL_MESSAGE = (
    "Sorry, I can only help with Old School RuneScape questions. "
    "Ask me about bosses, skills, quests, gear, money making or your account!"
)

INJECTION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"\b(ignore|disregard|forget|override)\b.{0,30}\b(previous|prior|above|earlier|all|your)\b.{0,20}\b(instructions?|prompts?|rules?|directions?|guidelines?)\b",
        r"\b(reveal|show|print|repeat|output|display|tell me|what is|what's|leak)\b.{0,30}\b(your|the)\b.{0,15}\b(system|initial|hidden|original)\s+(prompt|instructions?|message)\b",
        r"\byou are (now|no longer)\b.{0,40}\b(dan|jailbroken|unrestricted|unfiltered|an? (?!osrs|old school)\w+ (assistant|ai|bot))\b",
        r"\b(jailbreak|developer mode|dan mode|do anything now)\b",
        r"\bpretend (that )?you (have no|don't have any|are not bound by)\b.{0,30}\b(rules|restrictions|guidelines|filters)\b",
        r"\bnew (system )?instructions?\s*:",
        r"</?\s*(system|assistant)\s*>",
    ]
]

DOMAIN_KEYWORDS = {
    # general
    "osrs", "runescape", "rs", "old school", "gielinor", "wiki", "grand exchange", "ge", "gp",
    "xp", "exp", "level", "lvl", "combat", "quest", "quests", "diary", "diaries", "clue", "clues",
    "slayer", "boss", "bosses", "raid", "raids", "kc", "drop", "drops", "drop rate", "pet", "loot",
    "gear", "bis", "setup", "inventory", "bank", "ironman", "iron", "hcim", "uim", "gim", "main",
    "pking", "pk", "pvm", "pvp", "wilderness", "wildy", "minigame", "max cape", "quest cape",
    "money making", "gp/hr", "xp/hr", "afk", "tick", "prayer", "spec", "special attack",
    "collection log", "clog", "achievement", "combat achievements", "ca",
    # skills
    "attack", "strength", "defence", "defense", "hitpoints", "hp", "ranged", "range", "magic",
    "mage", "runecrafting", "runecraft", "rc", "construction", "agility", "herblore", "thieving",
    "crafting", "fletching", "hunter", "mining", "smithing", "fishing", "cooking", "firemaking",
    "woodcutting", "farming", "sailing",
    # bosses and raids
    "zulrah", "vorkath", "jad", "zuk", "inferno", "fight caves", "fire cape", "infernal cape",
    "gauntlet", "corrupted gauntlet", "cg", "cerberus", "kraken", "thermy", "hydra", "alchemical hydra",
    "nightmare", "nex", "cox", "chambers of xeric", "tob", "theatre of blood", "toa",
    "tombs of amascut", "corp", "corporeal beast", "kq", "kalphite queen", "barrows", "gwd",
    "god wars", "bandos", "armadyl", "saradomin", "zamorak", "zilyana", "graardor", "kree'arra",
    "k'ril", "dks", "dagannoth", "sarachnis", "mole", "muspah", "vardorvis", "duke sucellus",
    "leviathan", "whisperer", "scurrius", "araxxor", "tempoross", "wintertodt", "zalcano",
    "giants foundry", "guardians of the rift", "gotr", "pest control", "soul wars", "tears of guthix",
    # items
    "whip", "abyssal", "tbow", "twisted bow", "bowfa", "scythe", "shadow", "tumeken", "blowpipe",
    "dragon", "adamant", "mithril", "torva", "ancestral", "masori", "void",
    "fury", "torture", "anguish", "tormented", "rune pouch", "dharok", "guthan", "karil", "ahrim",
    # places and misc
    "lumbridge", "varrock", "falador", "ardougne", "catherby", "edgeville", "zeah", "kourend",
    "prifddinas", "prif", "morytania", "karamja", "varlamore", "fossil island", "slayer task",
    "potion", "potions", "rune", "runes", "spellbook", "ancients", "lunars", "arceuus",
    "recipe for disaster", "rfd", "dragon slayer", "monkey madness", "desert treasure", "song of the elves",
}

OFF_TOPIC_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"\b(write|draft|compose)\b.{0,20}\b(essay|poem|cover letter|resume|cv|story|song|homework|email)\b",
        r"\b(help me|how (do|can) i|teach me to)\b.{0,20}\b(hack|phish|ddos|steal|crack)\b",
        r"\b(solve|do)\b.{0,15}\b(my )?(homework|assignment|math problem|exam)\b",
        r"\b(write|debug|fix)\b.{0,20}\b(code|program|script|function|sql|javascript|python)\b",
        r"\b(stock|crypto|bitcoin|forex)\b.{0,20}\b(advice|price|tips|invest)\b",
        r"\b(recipe for|cook me)\b(?!.{0,20}disaster)",
        r"\b(medical|legal|tax)\b.{0,15}\b(advice|question)\b",
        r"\b(who (won|is winning)|election|president)\b",
        r"\btranslate\b.{0,30}\b(into|to)\b",
    ]
]

_WORD_RE = re.compile(r"[a-z0-9'/]+")


def is_injection_attempt(text: str) -> bool:
    return any(p.search(text) for p in INJECTION_PATTERNS)


def contains_domain_keyword(text: str) -> bool:
    lowered = text.lower()
    words = set(_WORD_RE.findall(lowered))
    for keyword in DOMAIN_KEYWORDS:
        if " " in keyword:
            if keyword in lowered:
                return True
        elif keyword in words:
            return True
    return False


def is_off_topic(text: str) -> bool:
    """
    True when the message must be refused:
      1. it matches a prompt-injection phrasing (always blocked), or
      2. it contains no OSRS vocabulary at all AND matches a clearly off-topic request.
    """
    if not text or not text.strip():
        return False
    if is_injection_attempt(text):
        return True
    if contains_domain_keyword(text):
        return False
    return any(p.search(text) for p in OFF_TOPIC_PATTERNS)
