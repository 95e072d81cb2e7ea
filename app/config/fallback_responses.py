from typing import Dict, List

class FallbackResponses:
    """Respostas roteirizadas da Lexi, usadas pelo fluxo e quando o LLM não responde"""

    GREETING = "Hi! I'm Lexi from ODIA. What type of business do you run? 🇳🇬"
    QUALIFICATION = "Perfect! How do you currently handle customer inquiries on WhatsApp?"
    SOLUTION = (
        "Our AI handles inquiries 24/7, books appointments, and sends follow-ups. "
        "Ready for a free 7-day trial?"
    )
    TRIAL_OFFER_REPEAT = "Would you like to try our free 7-day trial? Just say 'yes' to get started!"
    ASK_BUSINESS_NAME = "Great! What's your business name?"
    ASK_OBJECTION = "No worries! What concerns do you have about automation?"
    OBJECTION_COST = "It pays for itself quickly. No credit card needed for the 7-day trial. Shall we start?"
    OBJECTION_COMPLEXITY = "Super easy! No tech skills needed. We handle the setup. Shall we start your trial?"
    OBJECTION_GENERIC = "Try it free for 7 days. No credit card needed. What do you say?"
    BUSINESS_NAME_RETRY = "Sorry, I didn't catch that. What's the name of your business?"
    ONBOARDING = "Welcome to your trial! Check your email for setup instructions. Need help?"
    TRIAL_SUPPORT = "I'm here to help! What do you need assistance with?"
    CUSTOMER_SUPPORT = "Thanks for being an ODIA customer! How can I help today?"
    TRIAL_RENEWAL = "Your trial has ended. Reply YES and our team will help you continue your automation."
    DEFAULT = "I help Nigerian businesses automate WhatsApp. What's your business type?"
    TECHNICAL_ERROR = "Sorry, I encountered an error. Please try again later."

    @staticmethod
    def trial_instructions(business_name: str, trial_days: int = 7) -> str:
        return (
            f"🎉 Welcome {business_name} to your ODIA WhatsApp Automation Trial!\n\n"
            "📧 Check your email for setup instructions\n"
            "📱 Link your WhatsApp Business number\n"
            "🤖 Start automating customer inquiries\n\n"
            f"Your trial ends in {trial_days} days. Need help? Just reply to this message!"
        )

    # Palavras-chave por intenção
    KEYWORD_TRIGGERS: Dict[str, List[str]] = {
        "business": ["business", "company", "shop", "store", "enterprise", "organization"],
        "automation": ["automate", "bot", "ai", "automatic", "system", "automation"],
        "pricing": ["price", "cost", "how much", "pricing", "fee", "charge"],
        "trial": ["trial", "test", "try", "demo", "free", "sample"],
    }

    GREETING_WORDS = ["hi", "hello", "hey", "good morning", "good afternoon", "good evening"]
    AFFIRMATIVE_WORDS = ["yes", "yeah", "yep", "sure", "okay", "ok", "alright"]
    NEGATIVE_WORDS = ["no", "not", "nope", "later"]

    INDUSTRY_KEYWORDS: Dict[str, List[str]] = {
        "restaurant": ["restaurant", "food", "cafe", "catering", "bakery"],
        "retail": ["shop", "store", "retail", "boutique", "supermarket"],
        "service": ["service", "consulting", "salon", "agency", "clinic"],
        "technology": ["tech", "software", "app"],
    }

