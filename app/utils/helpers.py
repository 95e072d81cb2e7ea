import re
from typing import Iterable, List

WHATSAPP_PREFIX = "whatsapp:"

def normalize_phone_number(phone: str) -> str:
    """Remove o prefixo do transporte e espaços: 'whatsapp:+234 801...' -> '+234801...'"""
    if not phone:
        return ""

    phone = phone.strip()
    if phone.lower().startswith(WHATSAPP_PREFIX):
        phone = phone[len(WHATSAPP_PREFIX):]

    digits = re.sub(r'\D', '', phone)
    if not digits:
        return ""

    return '+' + digits

def truncate_text(text: str, max_length: int = 160, suffix: str = "...") -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix

def contains_any(text: str, keywords: Iterable[str]) -> bool:
    return any(keyword in text for keyword in keywords)

def contains_any_word(text: str, words: Iterable[str]) -> bool:
    """Como contains_any, mas casando palavras inteiras ('hi' não casa com 'this')"""
    tokens = set(re.findall(r"[a-z']+", text.lower()))
    return any(word in tokens for word in words)

def capitalized_words(text: str, min_length: int = 3) -> List[str]:
    return [
        word.strip(".,!?") for word in text.split()
        if len(word.strip(".,!?")) >= min_length and word[0].isupper()
    ]

def round_rate(value: float) -> float:
    return round(value * 100) / 100
