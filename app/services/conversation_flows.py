import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from app.config.fallback_responses import FallbackResponses
from app.models.session import (
    BusinessContextUpdate, ConversationSession, TrialStatus
)
from app.utils.helpers import capitalized_words, contains_any, contains_any_word

logger = logging.getLogger(__name__)

@dataclass
class FlowResult:
    response: str
    step: str
    context_update: Optional[BusinessContextUpdate] = None
    should_create_trial: bool = False
    # Respostas que coletam dados precisam sair literalmente, sem reescrita do LLM
    exact_reply: bool = False

FlowHandler = Callable[[ConversationSession, str], Awaitable[FlowResult]]

class ConversationFlowManager:
    """Decide a etapa da conversa a partir do histórico e gera a resposta roteirizada"""

    def __init__(self, trial_days: int = 7, clock: Callable[[], datetime] = datetime.now):
        self.trial_days = trial_days
        self.clock = clock
        self.flows: Dict[str, Dict[str, FlowHandler]] = {}
        self._initialize_flows()

    def _initialize_flows(self):
        self.flows["new_prospect"] = {
            "greeting": self.handle_greeting,
            "qualification": self.handle_qualification,
            "solution_presentation": self.handle_solution_presentation,
            "trial_offer": self.handle_trial_offer,
            "objection_handling": self.handle_objection_handling,
            "collect_business_info": self.handle_collect_business_info,
        }
        self.flows["trial_user"] = {
            "onboarding": self.handle_onboarding,
            "trial_support": self.handle_trial_support,
        }
        self.flows["paid_customer"] = {
            "customer_support": self.handle_customer_support,
        }
        self.flows["expired_trial"] = {
            "trial_renewal": self.handle_trial_renewal,
        }

    async def process_message(self, session: ConversationSession, user_message: str) -> FlowResult:
        flow_type = self.determine_flow_type(session)
        current_step = self.determine_current_step(session)

        handler = self.flows.get(flow_type, {}).get(current_step)
        if not handler:
            logger.warning(f"No handler for step {current_step} in flow {flow_type}")
            return FlowResult(response=FallbackResponses.DEFAULT, step="general")

        result = await handler(session, user_message)
        logger.debug(f"Flow {flow_type}/{current_step} -> {result.step}")
        return result

    def determine_flow_type(self, session: ConversationSession) -> str:
        trial_status = session.business_context.trial_status

        if trial_status == TrialStatus.TRIAL:
            return "trial_user"
        if trial_status == TrialStatus.PAID:
            return "paid_customer"
        if trial_status == TrialStatus.EXPIRED:
            return "expired_trial"
        return "new_prospect"

    def determine_current_step(self, session: ConversationSession) -> str:
        context = session.business_context

        if context.trial_status == TrialStatus.PAID:
            return "customer_support"

        if context.trial_status == TrialStatus.EXPIRED:
            return "trial_renewal"

        if context.trial_status == TrialStatus.TRIAL:
            # Trial iniciado numa sessão anterior: onboarding já foi feito
            if context.signup_date and context.signup_date < session.start_time:
                return "trial_support"
            since = context.signup_date or session.start_time
            turns_in_trial = sum(
                1 for msg in self._prior_messages(session)
                if msg.role == "user" and msg.timestamp > since
            )
            return "onboarding" if turns_in_trial == 0 else "trial_support"

        # Prospect: perguntas literais definem a próxima etapa
        last_reply = session.last_assistant_message()
        if last_reply:
            if last_reply.content in (FallbackResponses.ASK_BUSINESS_NAME, FallbackResponses.BUSINESS_NAME_RETRY):
                return "collect_business_info"
            if last_reply.content == FallbackResponses.ASK_OBJECTION:
                return "objection_handling"

        prior_turns = sum(1 for msg in self._prior_messages(session) if msg.role == "user")
        if prior_turns == 0:
            return "greeting"
        if prior_turns == 1:
            return "qualification"
        if prior_turns == 2:
            return "solution_presentation"
        return "trial_offer"

    def _prior_messages(self, session: ConversationSession) -> List:
        # A mensagem atual do usuário já foi anexada ao histórico
        history = session.conversation_history
        if history and history[-1].role == "user":
            return history[:-1]
        return history

    # Etapas

    async def handle_greeting(self, session: ConversationSession, user_message: str) -> FlowResult:
        industry = detect_industry(user_message)
        return FlowResult(
            response=FallbackResponses.GREETING,
            step="greeting",
            context_update=BusinessContextUpdate(industry=industry) if industry else None
        )

    async def handle_qualification(self, session: ConversationSession, user_message: str) -> FlowResult:
        industry = detect_industry(user_message) or session.business_context.industry or "general"
        return FlowResult(
            response=FallbackResponses.QUALIFICATION,
            step="qualification",
            context_update=BusinessContextUpdate(industry=industry)
        )

    async def handle_solution_presentation(self, session: ConversationSession, user_message: str) -> FlowResult:
        return FlowResult(response=FallbackResponses.SOLUTION, step="solution_presentation")

    async def handle_trial_offer(self, session: ConversationSession, user_message: str) -> FlowResult:
        if is_affirmative(user_message):
            return FlowResult(
                response=FallbackResponses.ASK_BUSINESS_NAME,
                step="trial_offer",
                exact_reply=True
            )

        if is_negative(user_message):
            return FlowResult(
                response=FallbackResponses.ASK_OBJECTION,
                step="trial_offer",
                exact_reply=True
            )

        return FlowResult(response=FallbackResponses.TRIAL_OFFER_REPEAT, step="trial_offer")

    async def handle_objection_handling(self, session: ConversationSession, user_message: str) -> FlowResult:
        text = user_message.lower()

        if contains_any(text, ["expensive", "cost", "money", "price", "afford"]):
            response = FallbackResponses.OBJECTION_COST
        elif contains_any(text, ["difficult", "hard", "complicated", "technical"]):
            response = FallbackResponses.OBJECTION_COMPLEXITY
        else:
            response = FallbackResponses.OBJECTION_GENERIC

        return FlowResult(response=response, step="objection_handling")

    async def handle_collect_business_info(self, session: ConversationSession, user_message: str) -> FlowResult:
        info = extract_business_info(user_message)
        name = info.get("name")

        if not name:
            return FlowResult(
                response=FallbackResponses.BUSINESS_NAME_RETRY,
                step="collect_business_info",
                exact_reply=True
            )

        update = BusinessContextUpdate(
            name=name,
            trial_status=TrialStatus.TRIAL,
            signup_date=self.clock()
        )
        if info.get("industry") and not session.business_context.industry:
            update.industry = info["industry"]

        logger.info(f"Business info collected for {session.phone_number}: {name}")
        return FlowResult(
            response=FallbackResponses.trial_instructions(name, self.trial_days),
            step="collect_business_info",
            context_update=update,
            should_create_trial=True,
            exact_reply=True
        )

    async def handle_onboarding(self, session: ConversationSession, user_message: str) -> FlowResult:
        return FlowResult(response=FallbackResponses.ONBOARDING, step="onboarding")

    async def handle_trial_support(self, session: ConversationSession, user_message: str) -> FlowResult:
        return FlowResult(response=FallbackResponses.TRIAL_SUPPORT, step="trial_support")

    async def handle_customer_support(self, session: ConversationSession, user_message: str) -> FlowResult:
        return FlowResult(response=FallbackResponses.CUSTOMER_SUPPORT, step="customer_support")

    async def handle_trial_renewal(self, session: ConversationSession, user_message: str) -> FlowResult:
        return FlowResult(response=FallbackResponses.TRIAL_RENEWAL, step="trial_renewal")

NAME_STOPWORDS = set(
    FallbackResponses.AFFIRMATIVE_WORDS
    + FallbackResponses.NEGATIVE_WORDS
    + FallbackResponses.GREETING_WORDS
    + ["it's", "its", "our", "my", "name", "business", "called", "thanks"]
)

def is_affirmative(text: str) -> bool:
    return contains_any_word(text, FallbackResponses.AFFIRMATIVE_WORDS)

def is_negative(text: str) -> bool:
    return contains_any_word(text, FallbackResponses.NEGATIVE_WORDS)

def detect_industry(text: str) -> Optional[str]:
    text = text.lower()
    for industry, keywords in FallbackResponses.INDUSTRY_KEYWORDS.items():
        if contains_any(text, keywords):
            return industry
    return None

def detect_intent(user_message: str) -> str:
    text = user_message.lower()
    triggers = FallbackResponses.KEYWORD_TRIGGERS

    if contains_any(text, triggers["business"]):
        return "business_inquiry"
    if contains_any_word(text, triggers["automation"]) or contains_any(text, ["automat"]):
        return "automation_interest"
    if contains_any(text, triggers["pricing"]):
        return "pricing_inquiry"
    if contains_any_word(text, triggers["trial"]):
        return "trial_request"
    if contains_any_word(text, FallbackResponses.GREETING_WORDS) or contains_any(text, ["good morning", "good afternoon", "good evening"]):
        return "greeting"
    return "general_inquiry"

def extract_business_info(user_message: str) -> Dict[str, str]:
    """Extrai nome (palavras capitalizadas) e ramo de uma mensagem livre"""
    result: Dict[str, str] = {}
    text = user_message.strip()

    words = [w for w in capitalized_words(text) if w.lower() not in NAME_STOPWORDS]
    if words:
        result["name"] = " ".join(words)
    elif 2 <= len(text) <= 60 and not is_negative(text):
        # Muitos respondem só o nome, em minúsculas
        result["name"] = text.title()

    industry = detect_industry(text)
    if industry:
        result["industry"] = industry

    return result
